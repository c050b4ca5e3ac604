# digilib/repos/delivery_repo.py
from datetime import datetime
from typing import Dict, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from digilib.data.models.delivered_item import DeliveredItemModel
from digilib.data.models.delivery_record import DeliveryRecordModel


class DeliveryRepo:
    def __init__(self, db: Session):
        self.db = db

    def add(self, record: DeliveryRecordModel, titles: Dict[int, str] | None = None) -> DeliveryRecordModel:
        #rekordy dostarczeń są tylko dopisywane
        self.db.add(record)
        self.db.flush()

        titles = titles or {}
        for item_id in record.item_ids:
            self.db.add(
                DeliveredItemModel(
                    delivery_record_id=record.id,
                    item_id=item_id,
                    title=titles.get(item_id),
                    recipient=record.recipient,
                    delivered_at=record.delivered_at,
                )
            )
        self.db.flush()
        return record

    #statystyki
    def count_items(self, since: datetime | None = None, item_id: int | None = None) -> int:
        query = self.db.query(func.count(DeliveredItemModel.id))
        if since is not None:
            query = query.filter(DeliveredItemModel.delivered_at >= since)
        if item_id is not None:
            query = query.filter(DeliveredItemModel.item_id == item_id)
        return query.scalar() or 0

    def count_deliveries(self) -> int:
        return self.db.query(func.count(DeliveryRecordModel.id)).scalar() or 0

    def top_items(self, limit: int) -> List[Tuple[int, str | None, int]]:
        downloads = func.count(DeliveredItemModel.id).label("downloads")
        return (
            self.db.query(DeliveredItemModel.item_id, func.max(DeliveredItemModel.title), downloads)
            .group_by(DeliveredItemModel.item_id)
            .order_by(downloads.desc(), DeliveredItemModel.item_id)
            .limit(limit)
            .all()
        )

    def recent(self, limit: int) -> List[DeliveryRecordModel]:
        return (
            self.db.query(DeliveryRecordModel)
            .order_by(DeliveryRecordModel.delivered_at.desc(), DeliveryRecordModel.id.desc())
            .limit(limit)
            .all()
        )

    def recipient_totals(self, recipient: str) -> Tuple[int, int, datetime | None]:
        """(pobrane pozycje, dostarczenia, ostatnie pobranie) dla adresu."""
        items, last_at = (
            self.db.query(func.count(DeliveredItemModel.id), func.max(DeliveredItemModel.delivered_at))
            .filter(DeliveredItemModel.recipient == recipient)
            .one()
        )
        deliveries = (
            self.db.query(func.count(DeliveryRecordModel.id))
            .filter(DeliveryRecordModel.recipient == recipient)
            .scalar()
        )
        return items or 0, deliveries or 0, last_at
