"""Catalog account data models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now
from .enums import AccountCapacity, StockStatus


class Game(BaseModel):
    """A game title that can be attached to many accounts."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Unique game ID")
    title: str = Field(..., description="Title, unique case-insensitively")


class AccountCreate(BaseModel):
    """Data for creating or overwriting a catalog account."""

    channel_id: int = Field(..., description="Source channel ID")
    external_id: str = Field(..., description="Listing ID within the channel")
    title: str = Field(..., description="Listing title")
    description: str | None = Field(None, description="Full listing text")
    price_ps4: Decimal | None = Field(None, description="Price for PS4 capacity")
    price_ps5: Decimal | None = Field(None, description="Price for PS5 capacity")
    region: str | None = Field(None, description="Account region (e.g., 'US', 'TR')")
    capacity: AccountCapacity = Field(default=AccountCapacity.UNKNOWN)
    has_original_mail: bool = Field(default=False, description="Original e-mail is handed over")
    guarantee_minutes: int | None = Field(None, description="Seller guarantee duration")
    seller_info: str | None = Field(None)
    additional_info: str | None = Field(None)
    stock_status: StockStatus = Field(default=StockStatus.IN_STOCK)
    raw_message_id: int | None = Field(None, description="Raw message the account was produced from")


class Account(AccountCreate):
    """Full account model with database fields.

    ``games`` is None unless the query asked for the association to be
    loaded; an empty list means the account has no games.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Unique account ID")
    is_deleted: bool = Field(default=False, description="Soft-delete flag")
    last_scraped_at: datetime | None = Field(None, description="Last time the listing was seen during scrape")
    notes: str | None = Field(None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = Field(None)
    games: list[Game] | None = Field(None, description="Associated games, None when not loaded")

    @property
    def games_loaded(self) -> bool:
        return self.games is not None

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.stock_status == StockStatus.IN_STOCK
