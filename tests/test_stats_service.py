from datetime import timedelta

import pytest

from digilib.data.models.delivered_item import DeliveredItemModel
from digilib.services.stats_service import DownloadStatsService

from conftest import CART_KEY, STUDENT

OTHER_STUDENT = "student02@inst.edu"


@pytest.fixture
def stats(db, clock):
    return DownloadStatsService(db, clock=clock)


@pytest.fixture
def deliver(download_service, cart_service, notifier):
    def _deliver(*item_ids, recipient=STUDENT, origin="10.0.0.1"):
        for item_id in item_ids:
            cart_service.add(CART_KEY, item_id)
        started = download_service.initiate(CART_KEY, recipient, origin=origin)
        grant = download_service.submit_code(started["download_session_id"], notifier.last_code)
        b"".join(download_service.deliver(grant["download_token"], origin=origin).stream())
        return started["download_session_id"]

    return _deliver


class TestRecording:
    def test_each_delivered_item_is_recorded_with_title(self, deliver, db):
        deliver(1, 2)

        rows = db.query(DeliveredItemModel).order_by(DeliveredItemModel.item_id).all()
        assert [(r.item_id, r.title, r.recipient) for r in rows] == [
            (1, "Linear Algebra", STUDENT),
            (2, "Compilers: Principles", STUDENT),
        ]

    def test_omitted_items_are_not_counted(self, deliver, stats):
        deliver(1, 4)

        assert stats.item_downloads(1)["downloads"] == 1
        assert stats.item_downloads(4)["downloads"] == 0


class TestQueries:
    def test_summary_windows(self, deliver, stats, clock):
        deliver(1, 2)
        clock.advance(3 * 24 * 3600)
        deliver(1)

        assert stats.summary() == {
            "total_downloads": 3,
            "total_deliveries": 2,
            "downloads_today": 1,
            "downloads_this_week": 3,
            "downloads_this_month": 3,
        }

        clock.advance(10 * 24 * 3600)
        summary = stats.summary()
        assert (summary["downloads_today"], summary["downloads_this_week"], summary["downloads_this_month"]) == (0, 0, 3)

    def test_most_downloaded(self, deliver, stats, clock):
        deliver(1, 2)
        clock.advance(60)
        deliver(1)

        assert stats.most_downloaded() == [
            {"item_id": 1, "title": "Linear Algebra", "downloads": 2},
            {"item_id": 2, "title": "Compilers: Principles", "downloads": 1},
        ]
        assert [i["item_id"] for i in stats.most_downloaded(limit=1)] == [1]

    def test_recent_is_newest_first(self, deliver, stats, clock):
        first = deliver(1, 4)
        clock.advance(60)
        second = deliver(2, origin="10.0.0.9")

        recent = stats.recent()
        assert [r["download_session_id"] for r in recent] == [second, first]
        assert recent[0]["origin"] == "10.0.0.9"
        assert recent[1]["omitted"] == [{"item_id": 4, "reason": "file_missing"}]
        assert recent[1]["delivered_at"] == clock() - timedelta(seconds=60)

    def test_recipient_summary(self, deliver, stats, clock):
        deliver(1, 2)
        clock.advance(60)
        deliver(5)

        summary = stats.recipient_summary(" Student01@INST.edu ")
        assert summary == {
            "recipient": STUDENT,
            "total_downloads": 3,
            "deliveries": 2,
            "last_download_at": clock(),
        }

        other = stats.recipient_summary(OTHER_STUDENT)
        assert (other["total_downloads"], other["deliveries"], other["last_download_at"]) == (0, 0, None)

    def test_empty_history(self, stats):
        assert stats.summary()["total_downloads"] == 0
        assert stats.most_downloaded() == []
        assert stats.recent() == []
