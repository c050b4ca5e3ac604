from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from digilib.data.database import Base


class DeliveredItemModel(Base):
    __tablename__ = "delivered_items"

    id = Column(Integer, primary_key=True)
    delivery_record_id = Column(Integer, ForeignKey("delivery_records.id"), nullable=False, index=True)
    item_id = Column(Integer, nullable=False, index=True)
    title = Column(String(255), nullable=True)

    #kopie z rekordu dostarczenia, statystyki bez joinów
    recipient = Column(String(255), nullable=False, index=True)
    delivered_at = Column(DateTime(timezone=True), nullable=False, index=True)
