"""Change set produced when a listing's content changes."""

from datetime import datetime

from pydantic import BaseModel, Field, ValidationError

from .base import utc_now
from .enums import ChangeType, NotificationPriority


class FieldChange(BaseModel):
    """A single (field, old, new) difference, values rendered for display."""

    field: str
    old_value: str | None = None
    new_value: str | None = None

    def __str__(self) -> str:
        return f"{self.field}: {self.old_value or '-'} → {self.new_value or '-'}"


class ChangeSet(BaseModel):
    """Classified differences between two versions of a listing."""

    change_type: ChangeType = Field(default=ChangeType.NO_CHANGE)
    changes: list[FieldChange] = Field(default_factory=list)
    is_high_visibility: bool = Field(default=False, description="Sold status flipped")
    detected_at: datetime = Field(default_factory=utc_now)

    @property
    def has_changes(self) -> bool:
        return self.change_type != ChangeType.NO_CHANGE

    @property
    def changed_fields(self) -> list[str]:
        return [change.field for change in self.changes]

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | None) -> "ChangeSet | None":
        """Load a stored change set, returning None for missing or malformed data."""
        if not data:
            return None
        try:
            return cls.model_validate_json(data)
        except ValidationError:
            return None

    def summary(self, limit: int = 5) -> str:
        """Render an operator-facing description of the change.

        Args:
            limit: Maximum number of field changes to list.

        Returns:
            Multi-line text, first line is the change type.
        """
        lines = [f"Change: {self.change_type.value.replace('_', ' ')}"]
        for change in self.changes[:limit]:
            lines.append(f"• {change}")
        if len(self.changes) > limit:
            lines.append(f"... and {len(self.changes) - limit} more")
        return "\n".join(lines)

    def notification_priority(self) -> NotificationPriority:
        if self.is_high_visibility or self.change_type in (ChangeType.DELETED, ChangeType.STATUS_CHANGED):
            return NotificationPriority.HIGH
        if self.change_type == ChangeType.PRICE_CHANGED:
            return NotificationPriority.NORMAL
        return NotificationPriority.LOW
