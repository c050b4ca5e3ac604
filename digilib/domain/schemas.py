# digilib/domain/schemas.py
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class CartItemIn(BaseModel):
    """Schema dla dodawania / usuwania pozycji z koszyka."""

    model_config = ConfigDict(extra="forbid")

    session_key: str = Field(..., min_length=8, max_length=128, description="Klucz sesji przeglądarki")
    item_id: int = Field(..., gt=0, description="ID książki (musi być > 0)")


class CartEntryOut(BaseModel):
    item_id: int
    added_at: datetime
    expires_at: datetime


class CartOut(BaseModel):
    session_key: str
    items: List[CartEntryOut]
    count: int


class CartAddOut(BaseModel):
    status: str
    cart: CartOut


class CartClearOut(BaseModel):
    removed: int


class InitiateIn(BaseModel):
    """Schema dla rozpoczęcia pobierania koszyka."""

    model_config = ConfigDict(extra="forbid")

    session_key: str = Field(..., min_length=8, max_length=128)
    recipient: str = Field(..., min_length=3, max_length=255, description="Uczelniany adres email")


class InitiateItemIn(BaseModel):
    """Schema dla pobrania pojedynczej książki."""

    model_config = ConfigDict(extra="forbid")

    recipient: str = Field(..., min_length=3, max_length=255)
    item_id: int = Field(..., gt=0)


class VerifyIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    download_session_id: str = Field(..., min_length=16, max_length=64)
    code: str = Field(..., pattern=r"^\d{6}$", description="6-cyfrowy kod z emaila")


class ResendIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    download_session_id: str = Field(..., min_length=16, max_length=64)


class SnapshotItemOut(BaseModel):
    item_id: int
    title: str


class SessionOut(BaseModel):
    download_session_id: str
    state: str
    recipient: str
    items: List[SnapshotItemOut]
    otp_verified: bool
    delivered: bool
    created_at: datetime
    expires_at: datetime
    delivered_at: datetime | None = None


class InitiateOut(SessionOut):
    otp_expires_at: datetime


class ResendOut(BaseModel):
    download_session_id: str
    otp_expires_at: datetime


class TokenOut(BaseModel):
    download_session_id: str
    download_token: str
    token_expires_at: datetime
    download_url: str
    items: List[SnapshotItemOut]


class StatsSummaryOut(BaseModel):
    total_downloads: int
    total_deliveries: int
    downloads_today: int
    downloads_this_week: int
    downloads_this_month: int


class ItemDownloadsOut(BaseModel):
    item_id: int
    downloads: int


class TopItemOut(ItemDownloadsOut):
    title: str | None = None


class OmissionOut(BaseModel):
    item_id: int
    reason: str


class RecentDeliveryOut(BaseModel):
    download_session_id: str
    recipient: str
    mode: str
    item_ids: List[int]
    omitted: List[OmissionOut]
    origin: str | None = None
    delivered_at: datetime


class RecipientStatsOut(BaseModel):
    recipient: str
    total_downloads: int
    deliveries: int
    last_download_at: datetime | None = None
