from sqlalchemy import Column, Integer, String, DateTime, JSON

from digilib.data.database import Base


class AuditEventModel(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True)
    actor = Column(String(255), nullable=False)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(128), nullable=True)
    outcome = Column(String(32), nullable=False)
    #"metadata" jest zarezerwowane przez declarative
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
