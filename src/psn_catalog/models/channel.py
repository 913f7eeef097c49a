"""Source channel and parsing rule models."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import ChannelStatus, FieldType

RULE_FLAGS = re.IGNORECASE | re.MULTILINE


class ParsingRule(BaseModel):
    """A (field type, pattern) pair from a channel's parsing profile."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = Field(None)
    field_type: FieldType = Field(..., description="Field this rule extracts")
    pattern: str = Field(..., description="Regular expression; group 1 is the value when present")
    priority: int = Field(default=0, description="Lower runs first")
    is_active: bool = Field(default=True)

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        try:
            re.compile(value, RULE_FLAGS)
        except re.error as e:
            raise ValueError(f"invalid pattern {value!r}: {e}") from e
        return value

    @property
    def regex(self) -> re.Pattern[str]:
        return re.compile(self.pattern, RULE_FLAGS)


class Channel(BaseModel):
    """Per-channel scraping configuration and watermark.

    ``rules`` is None unless the channel was loaded together with its
    parsing profile.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Unique channel ID")
    external_id: str = Field(..., description="Upstream handle, e.g. '@psn_accounts'")
    name: str = Field(..., description="Display name")
    status: ChannelStatus = Field(default=ChannelStatus.ACTIVE)
    parsing_profile_id: int | None = Field(None)
    fetch_limit: int | None = Field(None, description="Messages to pull on first scrape, overrides the worker default")
    fetch_window_hours: int | None = Field(None, description="Window for catch-up scrapes, overrides the worker default")
    delay_after_scrape_ms: int | None = Field(None, description="Pause before the next channel, overrides the worker default")
    last_scraped_at: datetime | None = Field(None)
    last_scraped_message_id: int | None = Field(None)
    last_removal_check_at: datetime | None = Field(None)
    rules: list[ParsingRule] | None = Field(None, description="Parsing rules, None when not loaded")
