"""Raw message data models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now
from .enums import RawMessageStatus


class FetchedMessage(BaseModel):
    """A message as returned by the upstream message source."""

    external_id: int = Field(..., description="Message ID within the channel")
    text: str = Field(..., description="Message text")
    received_at: datetime = Field(default_factory=utc_now, description="When the message was posted")


class RawMessageCreate(BaseModel):
    """Data for storing a newly ingested message."""

    channel_id: int = Field(..., description="Source channel ID")
    external_message_id: int = Field(..., description="Message ID within the channel")
    text: str = Field(..., description="Raw message text")
    received_at: datetime = Field(default_factory=utc_now)
    content_hash: str | None = Field(None, description="Fingerprint of the text, None until computed")
    status: RawMessageStatus = Field(default=RawMessageStatus.PENDING)


class RawMessage(RawMessageCreate):
    """Full raw message model with database fields.

    The current version of a listing has ``is_current`` set; superseded
    versions are archived copies reachable through ``previous_message_id``.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Unique message ID")
    is_current: bool = Field(default=True)
    account_id: int | None = Field(None, description="Account produced from this message")
    change_details: str | None = Field(None, description="JSON change set against the previous version")
    previous_message_id: int | None = Field(None, description="Archived prior version")
    processed_at: datetime | None = Field(None)
    processing_result: str | None = Field(None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = Field(None)
    updated_by: str | None = Field(None)
