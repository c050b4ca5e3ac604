# digilib/services/stats_service.py
from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from digilib.repos.delivery_repo import DeliveryRepo
from digilib.utils.clock import Clock, as_utc, utcnow


class DownloadStatsService:
    """
    Statystyki pobrań liczone z rekordów dostarczeń.
    Pobranie = jedna pozycja dostarczona w pliku lub paczce.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.repo = DeliveryRepo(db)
        self.clock = clock

    def summary(self) -> Dict[str, Any]:
        now = self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "total_downloads": self.repo.count_items(),
            "total_deliveries": self.repo.count_deliveries(),
            "downloads_today": self.repo.count_items(since=start_of_day),
            "downloads_this_week": self.repo.count_items(since=now - timedelta(days=7)),
            "downloads_this_month": self.repo.count_items(since=now - timedelta(days=30)),
        }

    def item_downloads(self, item_id: int) -> Dict[str, Any]:
        return {"item_id": item_id, "downloads": self.repo.count_items(item_id=item_id)}

    def most_downloaded(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [
            {"item_id": item_id, "title": title, "downloads": downloads}
            for item_id, title, downloads in self.repo.top_items(limit)
        ]

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [
            {
                "download_session_id": r.session_id,
                "recipient": r.recipient,
                "mode": r.mode,
                "item_ids": list(r.item_ids or []),
                "omitted": list(r.omitted or []),
                "origin": r.origin,
                "delivered_at": as_utc(r.delivered_at),
            }
            for r in self.repo.recent(limit)
        ]

    def recipient_summary(self, recipient: str) -> Dict[str, Any]:
        recipient = recipient.strip().lower()
        downloads, deliveries, last_at = self.repo.recipient_totals(recipient)
        return {
            "recipient": recipient,
            "total_downloads": downloads,
            "deliveries": deliveries,
            "last_download_at": as_utc(last_at),
        }
