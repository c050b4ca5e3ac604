#digilib/data/models/download_session.py
from sqlalchemy import Column, String, DateTime, Boolean, JSON

from digilib.data.database import Base


class DownloadSessionModel(Base):
    __tablename__ = "download_sessions"

    id = Column(String(64), primary_key=True)
    #None dla pobrania pojedynczej pozycji bez koszyka
    session_key = Column(String(128), nullable=True, index=True)
    recipient = Column(String(255), nullable=False)

    #snapshot: [{"item_id": ..., "title": ...}] w kolejności koszyka
    items = Column(JSON, nullable=False)

    otp_purpose = Column(String(32), nullable=False)
    otp_reference = Column(String(128), nullable=False)

    state = Column(String(20), nullable=False, index=True)
    otp_verified = Column(Boolean, nullable=False, default=False)

    delivery_token = Column(String(64), nullable=True, unique=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    token_used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String(64), nullable=True)

    @property
    def item_ids(self):
        return [entry["item_id"] for entry in self.items or []]
