# digilib/services/otp_service.py
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from digilib.data.models.otp_challenge import OtpChallengeModel
from digilib.domain.errors import NotificationFailed, NotifierUnreachable, RateLimited
from digilib.domain.states import OtpPurpose, VerifyOutcome
from digilib.repos.otp_repo import OtpRepo
from digilib.utils.clock import Clock, as_utc, utcnow
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    def send(self, recipient: str, purpose: str, payload: Dict[str, Any]) -> None: ...


def generate_code() -> str:
    #jednostajnie z 100000-999999
    return f"{secrets.randbelow(900000) + 100000:06d}"


@dataclass(frozen=True)
class IssuedChallenge:
    code: str
    expires_at: datetime


class OtpService:
    """
    Silnik jednorazowych kodów (OTP).
    issue - nowy kod dla (odbiorca, cel, referencja), stary jest usuwany
    verify - atomowe sprawdzenie i oznaczenie kodu jako użytego
    """

    def __init__(
        self,
        db: Session,
        notifier: Notifier | None,
        clock: Clock = utcnow,
        code_factory: Callable[[], str] = generate_code,
    ):
        self.repo = OtpRepo(db)
        self.notifier = notifier
        self.clock = clock
        self.code_factory = code_factory

    def issue(self, recipient: str, purpose: OtpPurpose, reference_id: str) -> IssuedChallenge:
        now = self.clock()

        #cooldown liczony od ostatniego kodu, użytego czy nie
        latest = self.repo.get_latest(recipient, purpose.value, reference_id)
        if latest:
            available_at = as_utc(latest.created_at) + timedelta(seconds=purpose.cooldown_seconds)
            if available_at > now:
                retry_after = math.ceil((available_at - now).total_seconds())
                logger.warning(
                    f"OTP cooldown for {recipient} ({purpose.value}/{reference_id}), retry in {retry_after}s"
                )
                raise RateLimited(
                    "Kod został już wysłany, poczekaj przed kolejną próbą",
                    retry_after=retry_after,
                    action="otp_issue",
                )

        self.repo.delete_for(recipient, purpose.value, reference_id)

        code = self.code_factory()
        expires_at = now + timedelta(seconds=purpose.ttl_seconds)
        challenge = OtpChallengeModel(
            recipient=recipient,
            purpose=purpose.value,
            reference_id=reference_id,
            code=code,
            is_used=False,
            created_at=now,
            expires_at=expires_at,
        )

        try:
            self.repo.add(challenge)
            challenge_id = challenge.id
            self.repo.commit()
        except IntegrityError:
            #równoległe issue dla tej samej trójki wygrało
            self.repo.rollback()
            raise RateLimited(
                "Kod został już wysłany, poczekaj przed kolejną próbą",
                retry_after=purpose.cooldown_seconds,
                action="otp_issue",
            )

        try:
            self.notifier.send(
                recipient,
                purpose.value,
                {
                    "code": code,
                    "reference_id": reference_id,
                    "expires_at": expires_at.isoformat(),
                },
            )
        except NotifierUnreachable as e:
            #kod którego nikt nie dostał nie może zostać w bazie
            self.repo.delete_by_id(challenge_id)
            self.repo.commit()
            logger.error(f"OTP for {recipient} ({purpose.value}/{reference_id}) rolled back: {e}")
            raise NotificationFailed() from e

        logger.info(f"OTP issued for {recipient} ({purpose.value}/{reference_id}), expires {expires_at}")
        return IssuedChallenge(code=code, expires_at=expires_at)

    def verify(self, recipient: str, purpose: OtpPurpose, reference_id: str, code: str) -> VerifyOutcome:
        now = self.clock()

        #UPDATE ... SET is_used = true WHERE ... AND is_used = false AND expires_at > now
        rowcount = self.repo.mark_used(recipient, purpose.value, reference_id, code, now)
        if rowcount == 1:
            self.repo.commit()
            logger.info(f"OTP verified for {recipient} ({purpose.value}/{reference_id})")
            return VerifyOutcome.VERIFIED

        self.repo.rollback()

        stale = self.repo.find_unused(recipient, purpose.value, reference_id, code)
        if stale is not None and as_utc(stale.expires_at) <= now:
            logger.info(f"Expired OTP submitted for {recipient} ({purpose.value}/{reference_id})")
            return VerifyOutcome.EXPIRED

        logger.info(f"Invalid OTP submitted for {recipient} ({purpose.value}/{reference_id})")
        return VerifyOutcome.INVALID

    def purge_expired(self) -> int:
        removed = self.repo.delete_expired(self.clock())
        self.repo.commit()
        if removed:
            logger.info(f"Purged {removed} expired OTP challenges")
        return removed
