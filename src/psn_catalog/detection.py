"""Change detection between versions of a listing.

Two comparators exist. ``detect_changes`` compares parsed accounts field by
field and is the one the pipeline relies on. ``detect_change_type`` looks
only at raw text and is used when either version cannot be parsed.
"""

import logging
import re
import sqlite3
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

from .db.messages import get_current_message, get_message, update_message
from .db.operations import RecordNotFoundError
from .models.changes import ChangeSet, FieldChange
from .models.enums import ChangeType, RawMessageStatus
from .models.message import RawMessage
from .models.parsed import ParsedAccount

logger = logging.getLogger(__name__)

PRICE_EPSILON = Decimal("0.01")
MAX_DISPLAY_LENGTH = 200

_Getter = Callable[[ParsedAccount], Any]

TEXT_FIELDS: tuple[tuple[str, _Getter], ...] = (
    ("title", lambda parsed: parsed.title),
    ("region", lambda parsed: parsed.region),
    ("seller_info", lambda parsed: parsed.seller_info),
    ("additional_info", lambda parsed: parsed.additional_info),
)
MONEY_FIELDS: tuple[tuple[str, _Getter], ...] = (
    ("price_ps4", lambda parsed: parsed.price_ps4),
    ("price_ps5", lambda parsed: parsed.price_ps5),
)
EXACT_FIELDS: tuple[tuple[str, _Getter], ...] = (
    ("capacity", lambda parsed: parsed.capacity),
    ("has_original_mail", lambda parsed: parsed.has_original_mail),
    ("guarantee_minutes", lambda parsed: parsed.guarantee_minutes),
    ("sold_status", lambda parsed: parsed.is_sold),
)

PRICE_FIELDS = frozenset(name for name, _ in MONEY_FIELDS)


class InvalidTransitionError(Exception):
    """Raised when a raw message cannot move to the requested status."""

    def __init__(self, current: RawMessageStatus, target: RawMessageStatus):
        super().__init__(f"Cannot move message from {current.value} to {target.value}")
        self.current = current
        self.target = target


# --- structured comparison --------------------------------------------------


def _text_differs(old: str | None, new: str | None) -> bool:
    return (old or "").strip().casefold() != (new or "").strip().casefold()


def _money_differs(old: Decimal | None, new: Decimal | None) -> bool:
    if old is None or new is None:
        return old is not new
    return abs(old - new) > PRICE_EPSILON


def _game_keys(games: list[str]) -> set[str]:
    return {title.strip().casefold() for title in games if title.strip()}


def _display(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _display_games(games: list[str]) -> str:
    text = ", ".join(sorted((title.strip() for title in games if title.strip()), key=str.casefold))
    if len(text) > MAX_DISPLAY_LENGTH:
        return text[:MAX_DISPLAY_LENGTH - 1] + "…"
    return text


def _classify(changes: list[FieldChange]) -> tuple[ChangeType, bool]:
    fields = {change.field for change in changes}
    if not fields:
        return ChangeType.NO_CHANGE, False
    # Sold status dominates every other difference
    if "sold_status" in fields:
        return ChangeType.STATUS_CHANGED, True
    if fields <= PRICE_FIELDS:
        return ChangeType.PRICE_CHANGED, False
    if fields == {"region"}:
        return ChangeType.REGION_CHANGED, False
    if fields == {"games"}:
        return ChangeType.GAMES_CHANGED, False
    return ChangeType.MODIFIED, False


def detect_changes(old: ParsedAccount | None, new: ParsedAccount | None) -> ChangeSet:
    """Compare two parsed versions of a listing.

    Args:
        old: Previous version, None if the listing is new.
        new: Current version, None if the listing disappeared.

    Returns:
        Classified change set. Prices within 0.01 of each other are equal.
    """
    if old is None and new is None:
        return ChangeSet(change_type=ChangeType.NO_CHANGE)
    if old is None:
        return ChangeSet(change_type=ChangeType.NEW)
    if new is None:
        return ChangeSet(change_type=ChangeType.DELETED, is_high_visibility=True)

    changes: list[FieldChange] = []
    for name, get in TEXT_FIELDS:
        if _text_differs(get(old), get(new)):
            changes.append(FieldChange(field=name, old_value=get(old), new_value=get(new)))
    for name, get in MONEY_FIELDS:
        if _money_differs(get(old), get(new)):
            changes.append(FieldChange(field=name, old_value=_display(get(old)), new_value=_display(get(new))))
    for name, get in EXACT_FIELDS:
        if get(old) != get(new):
            changes.append(FieldChange(field=name, old_value=_display(get(old)), new_value=_display(get(new))))
    if _game_keys(old.games) != _game_keys(new.games):
        changes.append(
            FieldChange(field="games", old_value=_display_games(old.games), new_value=_display_games(new.games))
        )

    change_type, high_visibility = _classify(changes)
    return ChangeSet(change_type=change_type, changes=changes, is_high_visibility=high_visibility)


# --- raw text comparison ----------------------------------------------------

_PRICE_HINT = re.compile(
    r"(?:price|قیمت|цена)\s*[:=\-]?\s*(\d[\d.,]*)"
    r"|(\d[\d.,]*)\s*(?:\$|usd|dollar|تومان|toman|tl|₺|руб|₽)",
    re.IGNORECASE,
)
_STATUS_HINT = re.compile(
    r"\b(sold\s*out|sold|available|reserved)\b|(فروخته\s*شد|موجود|رزرو)|(продан|в\s*наличии)",
    re.IGNORECASE,
)


def _price_hint(text: str) -> str | None:
    match = _PRICE_HINT.search(text)
    if match is None:
        return None
    return re.sub(r"[.,]", "", match.group(1) or match.group(2))


def _status_hint(text: str) -> str | None:
    match = _STATUS_HINT.search(text)
    if match is None:
        return None
    return re.sub(r"\s+", " ", match.group(0).casefold())


def detect_change_type(old_text: str | None, new_text: str | None) -> ChangeType:
    """Classify a raw text edit without parsing.

    Empty new text is a deletion, empty old text a creation. Otherwise the
    first heuristic difference wins: price, then status; anything else is
    CONTENT_MODIFIED.
    """
    if not new_text or not new_text.strip():
        return ChangeType.DELETED
    if not old_text or not old_text.strip():
        return ChangeType.CREATED
    if _price_hint(old_text) != _price_hint(new_text):
        return ChangeType.PRICE_CHANGED
    if _status_hint(old_text) != _status_hint(new_text):
        return ChangeType.STATUS_CHANGED
    return ChangeType.CONTENT_MODIFIED


# --- message lifecycle ------------------------------------------------------


def transition_message(
    message: RawMessage,
    target: RawMessageStatus,
    actor: str,
    **fields: Any,
) -> None:
    """Move a message to ``target`` and write any extra columns.

    Raises:
        InvalidTransitionError: The lifecycle does not allow the move.
    """
    if not message.status.can_transition_to(target):
        raise InvalidTransitionError(message.status, target)
    update_message(message.id, {"status": target, **fields}, actor)
    logger.debug(f"Message {message.id}: {message.status.value} -> {target.value} by {actor}")


def has_content_changed(
    channel_id: int,
    external_message_id: int,
    new_hash: str,
    actor: str = "scraper",
) -> bool:
    """Check a fresh fingerprint against the stored version of a listing.

    First sight returns True without touching storage. A differing hash
    moves the stored message to PENDING_CHANGE and returns True. A storage
    error is logged and treated as a change.

    Args:
        channel_id: Source channel ID.
        external_message_id: Message ID within the channel.
        new_hash: Fingerprint of the freshly fetched text.
        actor: Recorded as the updater of the stored message.

    Returns:
        True if the message is new or its content changed.
    """
    try:
        stored = get_current_message(channel_id, external_message_id)
        if stored is None:
            return True
        if stored.content_hash == new_hash:
            return False
        transition_message(stored, RawMessageStatus.PENDING_CHANGE, actor)
        logger.info(f"Content of message {external_message_id} in channel {channel_id} changed")
        return True
    except sqlite3.Error as e:
        logger.error(f"Change check failed for message {external_message_id} in channel {channel_id}: {e}")
        return True


def get_previous_message(channel_id: int, external_message_id: int) -> RawMessage | None:
    """Get the version the current message replaced, if any."""
    current = get_current_message(channel_id, external_message_id)
    if current is None or current.previous_message_id is None:
        return None
    return get_message(current.previous_message_id)


def _load(message_id: int) -> RawMessage:
    message = get_message(message_id)
    if message is None:
        raise RecordNotFoundError(f"Raw message {message_id} not found")
    return message


def approve_change(message_id: int, actor: str) -> RawMessage:
    """Accept a detected change; the message is queued for processing again."""
    message = _load(message_id)
    if message.status != RawMessageStatus.PENDING_CHANGE:
        raise InvalidTransitionError(message.status, RawMessageStatus.PENDING)
    transition_message(message, RawMessageStatus.PENDING, actor)
    logger.info(f"Change on message {message_id} approved by {actor}")
    return _load(message_id)


def reject_change(message_id: int, actor: str) -> RawMessage:
    """Discard a detected change; the message is ignored."""
    message = _load(message_id)
    if message.status != RawMessageStatus.PENDING_CHANGE:
        raise InvalidTransitionError(message.status, RawMessageStatus.IGNORED)
    transition_message(message, RawMessageStatus.IGNORED, actor, processing_result="Change rejected")
    logger.info(f"Change on message {message_id} rejected by {actor}")
    return _load(message_id)


def mark_ignored(message_id: int, actor: str) -> RawMessage:
    """Mark a message as not relevant to the catalog."""
    message = _load(message_id)
    transition_message(message, RawMessageStatus.IGNORED, actor)
    return _load(message_id)
