# digilib/api/routers/stats.py
from typing import List

from fastapi import APIRouter, Depends, Path, Query

from digilib.api.deps import get_stats_service
from digilib.domain.schemas import (
    ItemDownloadsOut,
    RecentDeliveryOut,
    RecipientStatsOut,
    StatsSummaryOut,
    TopItemOut,
)
from digilib.services.stats_service import DownloadStatsService

#panel administracyjny, autoryzacja po stronie bramki admina
router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/summary", response_model=StatsSummaryOut)
def summary(svc: DownloadStatsService = Depends(get_stats_service)):
    return svc.summary()


@router.get("/items/top", response_model=List[TopItemOut])
def most_downloaded(
    limit: int = Query(10, ge=1, le=100),
    svc: DownloadStatsService = Depends(get_stats_service),
):
    return svc.most_downloaded(limit)


@router.get("/items/{item_id}", response_model=ItemDownloadsOut)
def item_downloads(
    item_id: int = Path(..., gt=0),
    svc: DownloadStatsService = Depends(get_stats_service),
):
    return svc.item_downloads(item_id)


@router.get("/recent", response_model=List[RecentDeliveryOut])
def recent(
    limit: int = Query(20, ge=1, le=100),
    svc: DownloadStatsService = Depends(get_stats_service),
):
    """Ostatnie dostarczenia, najnowsze pierwsze."""
    return svc.recent(limit)


@router.get("/recipients/{recipient}", response_model=RecipientStatsOut)
def recipient_summary(recipient: str, svc: DownloadStatsService = Depends(get_stats_service)):
    return svc.recipient_summary(recipient)
