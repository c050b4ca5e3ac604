# digilib/services/download_service.py
import secrets
from datetime import timedelta
from typing import Any, Dict, Iterable, List

from sqlalchemy.orm import Session

from digilib.data.models.delivery_record import DeliveryRecordModel
from digilib.data.models.download_session import DownloadSessionModel
from digilib.domain.errors import (
    ChallengeExpired,
    ChallengeMismatch,
    DownloadError,
    InvalidSessionState,
    ItemNotInSession,
    RateLimited,
    SessionNotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from digilib.domain.recipients import validate_recipient
from digilib.domain.states import OtpPurpose, SessionState, VerifyOutcome, sources_for
from digilib.repos.delivery_repo import DeliveryRepo
from digilib.repos.session_repo import SessionRepo
from digilib.services.audit_service import DbAuditSink
from digilib.services.cart_service import CartService, Catalog
from digilib.services.delivery_service import DeliveryService, PreparedDelivery
from digilib.services.otp_service import OtpService
from digilib.services.rate_guard import RateGuard
from digilib.utils.clock import Clock, as_utc, utcnow
from digilib.utils.settings import (
    ALLOWED_RECIPIENT_DOMAINS,
    DOWNLOAD_SESSION_TTL_SECONDS,
    DOWNLOAD_TOKEN_TTL_SECONDS,
)
from digilib.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class DownloadService:
    """
    Orkiestrator sesji pobierania.

    INITIATED -> OTP_PENDING -> OTP_VERIFIED -> TOKEN_ISSUED -> DELIVERED
    oraz terminalne EXPIRED i FAILED.

    Każde przejście to warunkowy update (compare-and-set) na stanie,
    wynik rowcount decyduje, kto wygrał. Wygasanie sprawdzane leniwie
    przy każdym dostępie, sweep w celery jest tylko optymalizacją.
    """

    def __init__(
        self,
        db: Session,
        cart: CartService,
        otp: OtpService,
        delivery: DeliveryService | None,
        catalog: Catalog | None,
        audit: DbAuditSink,
        rate_guard: RateGuard | None = None,
        clock: Clock = utcnow,
        session_ttl_seconds: int = DOWNLOAD_SESSION_TTL_SECONDS,
        token_ttl_seconds: int = DOWNLOAD_TOKEN_TTL_SECONDS,
        allowed_domains: Iterable[str] = ALLOWED_RECIPIENT_DOMAINS,
    ):
        self.repo = SessionRepo(db)
        self.delivery_repo = DeliveryRepo(db)
        self.cart = cart
        self.otp = otp
        self.delivery = delivery
        self.catalog = catalog
        self.audit = audit
        self.rate_guard = rate_guard
        self.clock = clock
        self.session_ttl_seconds = session_ttl_seconds
        self.token_ttl_seconds = token_ttl_seconds
        self.allowed_domains = tuple(allowed_domains)

    #pomocnicze
    def _guard(self, action: str, identity: str, actor: str) -> None:
        if self.rate_guard is None:
            return
        if self.rate_guard.allow(identity, action):
            return

        retry_after = self.rate_guard.retry_after(identity, action)
        self.audit.record(
            actor,
            "rate_limited",
            "rate_guard",
            action,
            "denied",
            {"identity": identity, "retry_after": retry_after},
        )
        raise RateLimited(retry_after=retry_after, action=action)

    def _transition(
        self,
        session_id: str,
        target: SessionState,
        actor: str,
        extra: Dict[str, Any] | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> bool:
        rowcount = self.repo.transition(session_id, sources_for(target), target, extra)
        if rowcount == 0:
            self.repo.rollback()
            logger.info(f"Session {session_id}: transition to {target.value} lost (state changed concurrently)")
            return False

        self.repo.commit()
        logger.info(f"Session {session_id} -> {target.value}")
        self.audit.record(actor, "session_transition", "download_session", session_id, target.value, metadata)
        return True

    def _expire_if_overdue(self, session: DownloadSessionModel) -> bool:
        """True gdy sesja jest (lub właśnie stała się) EXPIRED."""
        state = SessionState(session.state)
        if state is SessionState.EXPIRED:
            return True
        if state.is_terminal:
            return False

        now = self.clock()
        overdue = as_utc(session.expires_at) <= now
        if state is SessionState.TOKEN_ISSUED and session.token_expires_at is not None:
            overdue = overdue or as_utc(session.token_expires_at) <= now

        if not overdue:
            return False

        session_id = session.id
        self._transition(session_id, SessionState.EXPIRED, SYSTEM_ACTOR, metadata={"reason": "timeout"})
        self.repo.refresh(session)
        return SessionState(session.state) is SessionState.EXPIRED

    def _load(self, session_id: str) -> DownloadSessionModel:
        session = self.repo.get(session_id)
        if session is None:
            raise SessionNotFound(download_session_id=session_id)
        return session

    def _title_for(self, item_id: int) -> str:
        item = self.catalog.get_item(item_id) if self.catalog else None
        return item.title if item else f"Item {item_id}"

    def _view(self, session: DownloadSessionModel) -> Dict[str, Any]:
        return {
            "download_session_id": session.id,
            "state": session.state,
            "recipient": session.recipient,
            "items": list(session.items or []),
            "otp_verified": bool(session.otp_verified),
            "delivered": session.state == SessionState.DELIVERED.value,
            "created_at": as_utc(session.created_at),
            "expires_at": as_utc(session.expires_at),
            "delivered_at": as_utc(session.delivered_at),
        }

    def _supersede(self, session_key: str, actor: str) -> List[str]:
        #jedna żywa sesja na koszyk, starsze przechodzą w EXPIRED
        superseded = []
        for session_id in self.repo.live_ids_for_cart(session_key):
            if self._transition(session_id, SessionState.EXPIRED, actor, metadata={"reason": "superseded"}):
                superseded.append(session_id)
        return superseded

    def _open_session(
        self,
        session_key: str | None,
        recipient: str,
        snapshot: List[Dict[str, Any]],
        purpose: OtpPurpose,
        reference_id: str | None,
        origin: str | None,
    ) -> Dict[str, Any]:
        now = self.clock()
        session_id = secrets.token_urlsafe(32)
        reference_id = reference_id or session_id

        self.repo.create(
            DownloadSessionModel(
                id=session_id,
                session_key=session_key,
                recipient=recipient,
                items=snapshot,
                otp_purpose=purpose.value,
                otp_reference=reference_id,
                state=SessionState.INITIATED.value,
                otp_verified=False,
                created_at=now,
                expires_at=now + timedelta(seconds=self.session_ttl_seconds),
            )
        )
        self.repo.commit()
        logger.info(f"Session {session_id} -> INITIATED ({len(snapshot)} items for {recipient})")
        self.audit.record(
            recipient,
            "session_transition",
            "download_session",
            session_id,
            SessionState.INITIATED.value,
            {"items": [s["item_id"] for s in snapshot], "origin": origin},
        )

        try:
            issued = self.otp.issue(recipient, purpose, reference_id)
        except DownloadError as e:
            self._transition(
                session_id,
                SessionState.FAILED,
                recipient,
                extra={"failure_reason": e.code},
                metadata={"reason": e.code},
            )
            raise

        self._transition(session_id, SessionState.OTP_PENDING, recipient)

        session = self._load(session_id)
        return {**self._view(session), "otp_expires_at": issued.expires_at}

    #use cases
    def initiate(self, session_key: str, recipient: str, origin: str | None = None) -> Dict[str, Any]:
        """
        Use Case: rozpoczęcie pobierania koszyka.

        1. Walidacja adresu uczelnianego
        2. Snapshot koszyka (pusty koszyk = ValidationError, bez sesji)
        3. Starsze żywe sesje tego koszyka -> EXPIRED
        4. Nowa sesja INITIATED, OTP, OTP_PENDING
        """
        recipient = validate_recipient(recipient, self.allowed_domains)
        self._guard("download_initiate", origin or recipient, recipient)

        entries = self.cart.list(session_key)
        if not entries:
            self.audit.record(recipient, "download_initiate", "cart", session_key, "rejected", {"reason": "empty_cart"})
            raise ValidationError("Koszyk jest pusty", field="session_key")

        snapshot = [{"item_id": e["item_id"], "title": self._title_for(e["item_id"])} for e in entries]

        self._guard("otp_issue", recipient, recipient)
        self._supersede(session_key, recipient)

        return self._open_session(session_key, recipient, snapshot, OtpPurpose.CART_DOWNLOAD, None, origin)

    def initiate_item(self, recipient: str, item_id: int, origin: str | None = None) -> Dict[str, Any]:
        """Pobranie pojedynczej książki, bez koszyka."""
        recipient = validate_recipient(recipient, self.allowed_domains)
        self._guard("download_initiate", origin or recipient, recipient)

        item = self.catalog.get_item(item_id)
        if item is None:
            raise ValidationError("Książka nie istnieje", field="item_id", item_id=item_id)

        self._guard("otp_issue", recipient, recipient)

        snapshot = [{"item_id": item.id, "title": item.title}]
        return self._open_session(None, recipient, snapshot, OtpPurpose.ITEM_DOWNLOAD, str(item.id), origin)

    def resend_code(self, session_id: str, origin: str | None = None) -> Dict[str, Any]:
        session = self._load(session_id)
        if self._expire_if_overdue(session):
            raise ChallengeExpired(download_session_id=session_id)
        if session.state != SessionState.OTP_PENDING.value:
            raise InvalidSessionState(download_session_id=session_id, state=session.state)

        recipient = session.recipient
        self._guard("otp_issue", recipient, recipient)

        issued = self.otp.issue(recipient, OtpPurpose(session.otp_purpose), session.otp_reference)
        self.audit.record(recipient, "otp_resend", "download_session", session_id, "sent", {"origin": origin})
        return {"download_session_id": session_id, "otp_expires_at": issued.expires_at}

    def submit_code(self, session_id: str, code: str, origin: str | None = None) -> Dict[str, Any]:
        session = self._load(session_id)
        recipient = session.recipient
        self._guard("code_submit", session_id, recipient)

        if self._expire_if_overdue(session):
            raise ChallengeExpired("Sesja pobierania wygasła, rozpocznij od nowa", download_session_id=session_id)

        if session.state != SessionState.OTP_PENDING.value:
            raise InvalidSessionState(download_session_id=session_id, state=session.state)

        outcome = self.otp.verify(recipient, OtpPurpose(session.otp_purpose), session.otp_reference, code)

        if outcome is VerifyOutcome.INVALID:
            self.audit.record(recipient, "otp_verify", "download_session", session_id, "invalid", {"origin": origin})
            raise ChallengeMismatch(download_session_id=session_id)

        if outcome is VerifyOutcome.EXPIRED:
            self.audit.record(recipient, "otp_verify", "download_session", session_id, "expired", {"origin": origin})
            raise ChallengeExpired(download_session_id=session_id)

        if not self._transition(session_id, SessionState.OTP_VERIFIED, recipient, extra={"otp_verified": True}):
            raise InvalidSessionState(download_session_id=session_id)

        session = self._load(session_id)
        now = self.clock()
        token = secrets.token_urlsafe(32)
        #token nie żyje dłużej niż sesja
        token_expires_at = min(now + timedelta(seconds=self.token_ttl_seconds), as_utc(session.expires_at))

        if not self._transition(
            session_id,
            SessionState.TOKEN_ISSUED,
            recipient,
            extra={"delivery_token": token, "token_expires_at": token_expires_at},
        ):
            raise InvalidSessionState(download_session_id=session_id)

        return {
            "download_session_id": session_id,
            "download_token": token,
            "token_expires_at": token_expires_at,
            "items": list(session.items or []),
        }

    def get_session(self, session_id: str) -> Dict[str, Any]:
        session = self._load(session_id)
        self._expire_if_overdue(session)
        return self._view(session)

    def deliver(
        self,
        token: str,
        item_id: int | None = None,
        range_header: str | None = None,
        origin: str | None = None,
    ) -> PreparedDelivery:
        """
        Use Case: pobranie pliku lub paczki tokenem.

        Plik przygotowywany jest przed zużyciem tokenu, więc błędy
        (brak pliku, zły zakres) nie zmieniają stanu sesji.
        Token zużywany warunkowym updatem przed streamowaniem.
        """
        session = self.repo.get_by_token(token) if token else None
        if session is None:
            raise TokenInvalid()

        session_id = session.id
        recipient = session.recipient

        if session.state == SessionState.DELIVERED.value or session.token_used_at is not None:
            logger.warning(f"Token reuse attempt for session {session_id} from {origin} (potential abuse)")
            self.audit.record(
                origin or recipient,
                "token_reuse",
                "download_session",
                session_id,
                "rejected",
                {"origin": origin, "item_id": item_id},
            )
            raise TokenAlreadyUsed(download_session_id=session_id)

        if self._expire_if_overdue(session):
            raise TokenExpired(download_session_id=session_id)

        if session.state != SessionState.TOKEN_ISSUED.value:
            raise TokenInvalid()

        context = {"session_id": session_id}
        if item_id is not None:
            if item_id not in session.item_ids:
                raise ItemNotInSession(download_session_id=session_id, item_id=item_id)
            prepared = self.delivery.serve_single(item_id, range_header, context=context)
            #limit liczony tylko dla pobrań które faktycznie mogą ruszyć
            try:
                self._guard("item_fetch", origin or recipient, recipient)
            except RateLimited:
                prepared.close()
                raise
        else:
            prepared = self.delivery.serve_bundle(
                list(session.items or []),
                context=context,
                archive_name=f"library_books_{session_id[:8]}.zip",
            )

        session_key = session.session_key
        titles = {entry["item_id"]: entry.get("title") for entry in session.items or []}
        now = self.clock()
        try:
            won = self.repo.consume_token(session_id, token, now)
        except Exception:
            prepared.close()
            raise

        if won == 0:
            self.repo.rollback()
            prepared.close()
            logger.warning(f"Token for session {session_id} consumed concurrently, rejecting {origin} (potential abuse)")
            self.audit.record(
                origin or recipient,
                "token_reuse",
                "download_session",
                session_id,
                "rejected",
                {"origin": origin, "item_id": item_id, "race": True},
            )
            raise TokenAlreadyUsed(download_session_id=session_id)

        self.repo.commit()
        logger.info(f"Session {session_id} -> DELIVERED ({prepared.mode}, items {prepared.item_ids})")

        #koszyk czyścimy dopiero po skutecznym zużyciu tokenu
        if session_key:
            self.cart.clear(session_key)

        self.delivery_repo.add(
            DeliveryRecordModel(
                session_id=session_id,
                recipient=recipient,
                mode=prepared.mode,
                item_ids=prepared.item_ids,
                omitted=[{"item_id": o.item_id, "reason": o.reason} for o in prepared.omitted],
                origin=origin,
                delivered_at=now,
            ),
            titles=titles,
        )
        self.repo.commit()

        self.audit.record(
            recipient,
            "session_transition",
            "download_session",
            session_id,
            SessionState.DELIVERED.value,
            {"mode": prepared.mode, "items": prepared.item_ids, "origin": origin},
        )
        return prepared

    def expire_overdue(self) -> int:
        expired = 0
        for session_id in self.repo.overdue_ids(self.clock()):
            if self._transition(session_id, SessionState.EXPIRED, SYSTEM_ACTOR, metadata={"reason": "timeout"}):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue download sessions")
        return expired
