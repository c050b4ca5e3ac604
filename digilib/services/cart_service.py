# digilib/services/cart_service.py
from datetime import timedelta
from typing import Any, Dict, List, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from digilib.data.models.cart_entry import CartEntryModel
from digilib.domain.states import AddOutcome
from digilib.repos.cart_repo import CartRepo
from digilib.services.catalog_client import CatalogItem
from digilib.utils.clock import Clock, as_utc, utcnow
from digilib.utils.settings import CART_TTL_SECONDS, CART_MAX_ITEMS
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


class Catalog(Protocol):
    def get_item(self, item_id: int) -> CatalogItem | None: ...


class CartService:
    """
    Koszyk pobierania przypisany do klucza sesji przeglądarki.
    commands (add, remove, clear, sweep_expired) modyfikują stan
    query (list) tylko odczyt, wygasłe wpisy są pomijane
    """

    def __init__(
        self,
        db: Session,
        catalog: Catalog | None,
        clock: Clock = utcnow,
        ttl_seconds: int = CART_TTL_SECONDS,
        max_items: int = CART_MAX_ITEMS,
    ):
        self.repo = CartRepo(db)
        self.catalog = catalog
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items

    #query - odczyt
    def list(self, session_key: str) -> List[Dict[str, Any]]:
        entries = self.repo.list_live(session_key, self.clock())
        return [
            {
                "item_id": e.item_id,
                "added_at": as_utc(e.added_at),
                "expires_at": as_utc(e.expires_at),
            }
            for e in entries
        ]

    #commands
    def add(self, session_key: str, item_id: int) -> AddOutcome:
        if self.catalog.get_item(item_id) is None:
            logger.info(f"Item {item_id} not found in catalog, not added to cart {session_key}")
            return AddOutcome.ITEM_UNAVAILABLE

        now = self.clock()
        self.repo.delete_expired(now, session_key=session_key)

        if self.repo.get_live_entry(session_key, item_id, now):
            self.repo.commit()
            return AddOutcome.ALREADY_PRESENT

        if self.repo.count_live(session_key, now) >= self.max_items:
            self.repo.commit()
            logger.info(f"Cart {session_key} is full ({self.max_items} items)")
            return AddOutcome.CART_FULL

        try:
            self.repo.add_entry(
                CartEntryModel(
                    session_key=session_key,
                    item_id=item_id,
                    added_at=now,
                    expires_at=now + timedelta(seconds=self.ttl_seconds),
                )
            )
            self.repo.commit()
        except IntegrityError:
            #unikalność (session_key, item_id) pilnuje baza
            self.repo.rollback()
            return AddOutcome.ALREADY_PRESENT

        logger.info(f"Item {item_id} added to cart {session_key}")
        return AddOutcome.ADDED

    def remove(self, session_key: str, item_id: int) -> bool:
        removed = self.repo.delete_entry(session_key, item_id)
        self.repo.commit()
        if removed:
            logger.info(f"Item {item_id} removed from cart {session_key}")
        return removed > 0

    def clear(self, session_key: str) -> int:
        removed = self.repo.delete_for_session(session_key)
        self.repo.commit()
        logger.info(f"Cart {session_key} cleared ({removed} items)")
        return removed

    def sweep_expired(self) -> int:
        removed = self.repo.delete_expired(self.clock())
        self.repo.commit()
        if removed:
            logger.info(f"Swept {removed} expired cart entries")
        return removed
