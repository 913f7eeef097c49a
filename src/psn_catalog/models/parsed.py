"""Parser output."""

from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import AccountCapacity


class ParsedAccount(BaseModel):
    """Structured fields extracted from one listing message. Never persisted."""

    external_id: str = Field(..., description="Listing ID within the channel")
    title: str = Field(..., description="First meaningful line of the message")
    description: str | None = Field(None, description="Original message text")
    price_ps4: Decimal | None = Field(None)
    price_ps5: Decimal | None = Field(None)
    region: str | None = Field(None)
    capacity: AccountCapacity = Field(default=AccountCapacity.UNKNOWN)
    capacity_info: str | None = Field(None, description="Raw capacity text the tier was derived from")
    has_original_mail: bool = Field(default=False)
    guarantee_minutes: int | None = Field(None)
    seller_info: str | None = Field(None)
    additional_info: str | None = Field(None)
    is_sold: bool = Field(default=False)
    games: list[str] = Field(default_factory=list)
