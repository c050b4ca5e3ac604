#digilib/data/models/cart_entry.py
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from digilib.data.database import Base


class CartEntryModel(Base):
    __tablename__ = "cart_entries"
    __table_args__ = (
        UniqueConstraint("session_key", "item_id", name="uq_cart_entry_session_item"),
    )

    id = Column(Integer, primary_key=True)
    session_key = Column(String(128), nullable=False, index=True)
    item_id = Column(Integer, nullable=False)

    added_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
