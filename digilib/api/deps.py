# digilib/api/deps.py
from functools import lru_cache

import redis
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from digilib.data.database import get_db
from digilib.services.audit_service import DbAuditSink
from digilib.services.cart_service import CartService
from digilib.services.catalog_client import CatalogClient
from digilib.services.delivery_service import DeliveryService
from digilib.services.download_service import DownloadService
from digilib.services.notification_service import NotificationService
from digilib.services.otp_service import OtpService
from digilib.services.rate_guard import RateGuard
from digilib.services.stats_service import DownloadStatsService
from digilib.utils.clock import Clock, utcnow
from digilib.utils.settings import REDIS_URL

#każda zależność do podmiany przez app.dependency_overrides w testach


def get_catalog() -> CatalogClient:
    return CatalogClient()


def get_notifier() -> NotificationService:
    return NotificationService()


@lru_cache
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def get_rate_guard(client: redis.Redis = Depends(get_redis)) -> RateGuard:
    return RateGuard(client=client)


def get_clock() -> Clock:
    return utcnow


def get_delivery(catalog=Depends(get_catalog)) -> DeliveryService:
    return DeliveryService(catalog)


def get_cart_service(
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
    clock: Clock = Depends(get_clock),
) -> CartService:
    return CartService(db, catalog, clock=clock)


def get_download_service(
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
    notifier=Depends(get_notifier),
    rate_guard: RateGuard = Depends(get_rate_guard),
    delivery: DeliveryService = Depends(get_delivery),
    clock: Clock = Depends(get_clock),
) -> DownloadService:
    return DownloadService(
        db,
        cart=CartService(db, catalog, clock=clock),
        otp=OtpService(db, notifier, clock=clock),
        delivery=delivery,
        catalog=catalog,
        audit=DbAuditSink(db, clock=clock),
        rate_guard=rate_guard,
        clock=clock,
    )


def client_origin(request: Request) -> str:
    #pierwszy hop X-Forwarded-For (proxy), inaczej adres socketu
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def get_stats_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> DownloadStatsService:
    return DownloadStatsService(db, clock=clock)
