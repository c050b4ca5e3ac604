# digilib/api/routers/downloads.py
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse

from digilib.api.deps import client_origin, get_download_service
from digilib.domain.schemas import (
    InitiateIn,
    InitiateItemIn,
    InitiateOut,
    ResendIn,
    ResendOut,
    SessionOut,
    TokenOut,
    VerifyIn,
)
from digilib.services.download_service import DownloadService

router = APIRouter(prefix="/download", tags=["download"])

#błędy domeny (DownloadError) mapuje handler w main.py


@router.post("/initiate", response_model=InitiateOut, status_code=201)
def initiate(
    payload: InitiateIn,
    origin: str = Depends(client_origin),
    svc: DownloadService = Depends(get_download_service),
):
    """Snapshot koszyka i wysłanie kodu na adres uczelniany."""
    return svc.initiate(payload.session_key, payload.recipient, origin=origin)


@router.post("/initiate-item", response_model=InitiateOut, status_code=201)
def initiate_item(
    payload: InitiateItemIn,
    origin: str = Depends(client_origin),
    svc: DownloadService = Depends(get_download_service),
):
    return svc.initiate_item(payload.recipient, payload.item_id, origin=origin)


@router.post("/verify", response_model=TokenOut)
def verify(
    payload: VerifyIn,
    request: Request,
    origin: str = Depends(client_origin),
    svc: DownloadService = Depends(get_download_service),
):
    grant = svc.submit_code(payload.download_session_id, payload.code, origin=origin)
    grant["download_url"] = str(request.url_for("fetch").include_query_params(token=grant["download_token"]))
    return grant


@router.post("/resend", response_model=ResendOut)
def resend(
    payload: ResendIn,
    origin: str = Depends(client_origin),
    svc: DownloadService = Depends(get_download_service),
):
    return svc.resend_code(payload.download_session_id, origin=origin)


@router.get("/session/{download_session_id}", response_model=SessionOut)
def get_session(download_session_id: str, svc: DownloadService = Depends(get_download_service)):
    return svc.get_session(download_session_id)


@router.get("/fetch", name="fetch")
def fetch(
    token: str = Query(..., min_length=16, max_length=128),
    item_id: int | None = Query(None, gt=0),
    range_header: str | None = Header(None, alias="Range"),
    origin: str = Depends(client_origin),
    svc: DownloadService = Depends(get_download_service),
):
    """
    Bez item_id - paczka zip z całego snapshotu.
    Z item_id - pojedynczy plik, nagłówek Range obsługiwany.
    """
    prepared = svc.deliver(token, item_id=item_id, range_header=range_header, origin=origin)
    return StreamingResponse(
        prepared.stream(),
        status_code=prepared.status_code,
        media_type=prepared.media_type,
        headers=prepared.headers,
    )
