from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON

from digilib.data.database import Base


class DeliveryRecordModel(Base):
    __tablename__ = "delivery_records"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), ForeignKey("download_sessions.id"), nullable=False, index=True)
    recipient = Column(String(255), nullable=False)

    mode = Column(String(16), nullable=False)  # single | bundle
    item_ids = Column(JSON, nullable=False)
    omitted = Column(JSON, nullable=False, default=list)

    origin = Column(String(64), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=False)
