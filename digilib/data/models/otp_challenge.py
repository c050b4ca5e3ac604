from sqlalchemy import Column, Integer, String, DateTime, Boolean, UniqueConstraint

from digilib.data.database import Base


class OtpChallengeModel(Base):
    __tablename__ = "otp_challenges"
    #jeden aktywny kod na (odbiorca, cel, referencja)
    __table_args__ = (
        UniqueConstraint("recipient", "purpose", "reference_id", name="uq_otp_recipient_purpose_ref"),
    )

    id = Column(Integer, primary_key=True)
    recipient = Column(String(255), nullable=False, index=True)
    purpose = Column(String(32), nullable=False)
    reference_id = Column(String(128), nullable=False)

    code = Column(String(6), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
