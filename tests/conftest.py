import os

#konfiguracja musi być ustawiona zanim zaimportujemy digilib.*
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ALLOWED_RECIPIENT_DOMAINS"] = "inst.edu"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["SMTP_HOST"] = ""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from digilib.data.database import init_db
from digilib.domain.errors import CatalogUnavailable, NotifierUnreachable
from digilib.services.audit_service import DbAuditSink
from digilib.services.cart_service import CartService
from digilib.services.catalog_client import CatalogItem
from digilib.services.delivery_service import DeliveryService
from digilib.services.download_service import DownloadService
from digilib.services.otp_service import OtpService

STUDENT = "student01@inst.edu"
CART_KEY = "cart-session-0001"
FILE_SIZE = 1000


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeCatalog:
    def __init__(self, items=None):
        self.items = {i.id: i for i in (items or [])}
        self.unavailable = False

    def get_item(self, item_id: int):
        if self.unavailable:
            raise CatalogUnavailable(item_id=item_id)
        return self.items.get(item_id)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, recipient, purpose, payload):
        if self.fail:
            raise NotifierUnreachable("broker down")
        self.sent.append((recipient, purpose, payload))

    @property
    def last_code(self) -> str:
        return self.sent[-1][2]["code"]


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return FakeCatalog(
        [
            CatalogItem(id=1, title="Linear Algebra", author="Strang", file_ref="uploads/books/1.pdf"),
            CatalogItem(id=2, title="Compilers: Principles", author="Aho", file_ref="books/compilers.pdf"),
            CatalogItem(id=3, title="Open Textbook", author="Morin", file_ref="https://example.org/ods.pdf"),
            CatalogItem(id=4, title="Lost Volume", author=None, file_ref="books/missing.pdf"),
            CatalogItem(id=5, title="Fallback Book", author="Knuth", file_ref=None),
        ]
    )


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    (root / "uploads" / "books").mkdir(parents=True)
    (root / "books").mkdir()
    (root / "uploads" / "books" / "1.pdf").write_bytes(bytes(i % 256 for i in range(FILE_SIZE)))
    (root / "books" / "compilers.pdf").write_bytes(b"B" * 300)
    (root / "uploads" / "books" / "5.pdf").write_bytes(b"fallback")
    return root


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cart_service(db, catalog, clock):
    return CartService(db, catalog, clock=clock)


@pytest.fixture
def otp_service(db, notifier, clock):
    return OtpService(db, notifier, clock=clock)


@pytest.fixture
def delivery_service(catalog, storage_root):
    return DeliveryService(catalog, storage_root=str(storage_root), chunk_size=64)


@pytest.fixture
def audit(db, clock):
    return DbAuditSink(db, clock=clock)


@pytest.fixture
def make_download_service(db, cart_service, otp_service, delivery_service, catalog, audit, clock):
    def _make(rate_guard=None):
        return DownloadService(
            db,
            cart=cart_service,
            otp=otp_service,
            delivery=delivery_service,
            catalog=catalog,
            audit=audit,
            rate_guard=rate_guard,
            clock=clock,
            allowed_domains=("inst.edu",),
        )

    return _make


@pytest.fixture
def download_service(make_download_service):
    return make_download_service()
