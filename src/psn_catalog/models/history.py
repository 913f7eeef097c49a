"""Account history models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now


class ChangeRecord(BaseModel):
    """One field-level change of an account. Append-only."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int | None = Field(None)
    account_id: int = Field(...)
    field_name: str = Field(...)
    old_value: str | None = Field(None)
    new_value: str | None = Field(None)
    changed_at: datetime = Field(default_factory=utc_now)
    changed_by: str = Field(default="scraper", description="'scraper' or an admin identity")
