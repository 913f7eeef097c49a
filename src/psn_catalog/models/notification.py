"""Operator notification model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now
from .enums import NotificationPriority, NotificationType


class Notification(BaseModel):
    """An alert for the operators (bulk removal, auth failure, listing change)."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = Field(None)
    type: NotificationType = Field(...)
    priority: NotificationPriority = Field(default=NotificationPriority.NORMAL)
    title: str = Field(...)
    message: str = Field(...)
    related_entity_type: str | None = Field(None, description="e.g. 'channel', 'raw_message'")
    related_entity_id: int | None = Field(None)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
