# digilib/repos/otp_repo.py
from datetime import datetime

from sqlalchemy.orm import Session

from digilib.data.models.otp_challenge import OtpChallengeModel


class OtpRepo:
    def __init__(self, db: Session):
        self.db = db

    def _for_tuple(self, recipient: str, purpose: str, reference_id: str):
        return self.db.query(OtpChallengeModel).filter(
            OtpChallengeModel.recipient == recipient,
            OtpChallengeModel.purpose == purpose,
            OtpChallengeModel.reference_id == reference_id,
        )

    def get_latest(self, recipient: str, purpose: str, reference_id: str) -> OtpChallengeModel | None:
        return (
            self._for_tuple(recipient, purpose, reference_id)
            .order_by(OtpChallengeModel.created_at.desc())
            .first()
        )

    def delete_for(self, recipient: str, purpose: str, reference_id: str) -> int:
        return self._for_tuple(recipient, purpose, reference_id).delete(synchronize_session="fetch")

    def add(self, challenge: OtpChallengeModel) -> OtpChallengeModel:
        self.db.add(challenge)
        self.db.flush()
        return challenge

    def delete_by_id(self, challenge_id: int) -> int:
        return (
            self.db.query(OtpChallengeModel)
            .filter(OtpChallengeModel.id == challenge_id)
            .delete(synchronize_session="fetch")
        )

    def mark_used(self, recipient: str, purpose: str, reference_id: str, code: str, now: datetime) -> int:
        """
        Warunkowy update: kod pasuje, nieużyty i niewygasły.
        rowcount 1 oznacza, że ten wywołujący wygrał weryfikację.
        """
        return (
            self._for_tuple(recipient, purpose, reference_id)
            .filter(
                OtpChallengeModel.code == code,
                OtpChallengeModel.is_used.is_(False),
                OtpChallengeModel.expires_at > now,
            )
            .update({"is_used": True, "used_at": now}, synchronize_session=False)
        )

    def find_unused(self, recipient: str, purpose: str, reference_id: str, code: str) -> OtpChallengeModel | None:
        return (
            self._for_tuple(recipient, purpose, reference_id)
            .filter(
                OtpChallengeModel.code == code,
                OtpChallengeModel.is_used.is_(False),
            )
            .first()
        )

    def delete_expired(self, now: datetime) -> int:
        return (
            self.db.query(OtpChallengeModel)
            .filter(OtpChallengeModel.expires_at <= now)
            .delete(synchronize_session="fetch")
        )

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
