# digilib/repos/cart_repo.py
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from digilib.data.models.cart_entry import CartEntryModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_live_entry(self, session_key: str, item_id: int, now: datetime) -> CartEntryModel | None:
        return (
            self.db.query(CartEntryModel)
            .filter(
                CartEntryModel.session_key == session_key,
                CartEntryModel.item_id == item_id,
                CartEntryModel.expires_at > now,
            )
            .first()
        )

    def list_live(self, session_key: str, now: datetime) -> List[CartEntryModel]:
        return (
            self.db.query(CartEntryModel)
            .filter(
                CartEntryModel.session_key == session_key,
                CartEntryModel.expires_at > now,
            )
            .order_by(CartEntryModel.added_at, CartEntryModel.id)
            .all()
        )

    def count_live(self, session_key: str, now: datetime) -> int:
        return (
            self.db.query(CartEntryModel)
            .filter(
                CartEntryModel.session_key == session_key,
                CartEntryModel.expires_at > now,
            )
            .count()
        )

    def add_entry(self, entry: CartEntryModel) -> CartEntryModel:
        self.db.add(entry)
        self.db.flush()
        return entry

    def delete_entry(self, session_key: str, item_id: int) -> int:
        return (
            self.db.query(CartEntryModel)
            .filter(
                CartEntryModel.session_key == session_key,
                CartEntryModel.item_id == item_id,
            )
            .delete(synchronize_session="fetch")
        )

    def delete_for_session(self, session_key: str) -> int:
        return (
            self.db.query(CartEntryModel)
            .filter(CartEntryModel.session_key == session_key)
            .delete(synchronize_session="fetch")
        )

    def delete_expired(self, now: datetime, session_key: str | None = None) -> int:
        query = self.db.query(CartEntryModel).filter(CartEntryModel.expires_at <= now)
        if session_key is not None:
            query = query.filter(CartEntryModel.session_key == session_key)
        return query.delete(synchronize_session="fetch")

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
