"""Field-level diff of accounts into history records."""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .models.account import Account, AccountCreate, Game
from .models.base import utc_now
from .models.history import ChangeRecord

_Getter = Callable[[AccountCreate], Any]

# Tracked account fields, in the order records are written
TRACKED_FIELDS: tuple[tuple[str, _Getter], ...] = (
    ("title", lambda account: account.title),
    ("price_ps4", lambda account: account.price_ps4),
    ("price_ps5", lambda account: account.price_ps5),
    ("region", lambda account: account.region),
    ("capacity", lambda account: account.capacity),
    ("stock_status", lambda account: account.stock_status),
    ("has_original_mail", lambda account: account.has_original_mail),
    ("guarantee_minutes", lambda account: account.guarantee_minutes),
    ("seller_info", lambda account: account.seller_info),
    ("additional_info", lambda account: account.additional_info),
)


def format_value(value: Any) -> str | None:
    """Render a field value the way history stores it."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def format_games(games: list[Game]) -> str:
    return ", ".join(sorted((game.title for game in games), key=str.casefold))


def record(
    account_id: int,
    field_name: str,
    old: Any,
    new: Any,
    actor: str,
    changed_at: datetime | None = None,
) -> ChangeRecord:
    return ChangeRecord(
        account_id=account_id,
        field_name=field_name,
        old_value=format_value(old),
        new_value=format_value(new),
        changed_at=changed_at or utc_now(),
        changed_by=actor,
    )


def diff_accounts(
    old: Account,
    new: AccountCreate,
    actor: str,
    old_games: list[Game] | None = None,
    new_games: list[Game] | None = None,
    changed_at: datetime | None = None,
) -> list[ChangeRecord]:
    """List every tracked field whose value differs.

    Args:
        old: Stored account.
        new: Values about to be written.
        actor: 'scraper' or an admin identity.
        old_games: Current game set; games are compared only when both
            game lists are given.
        new_games: Game set about to be written.
        changed_at: Timestamp for all records, defaults to now.

    Returns:
        One record per changed field.
    """
    changed_at = changed_at or utc_now()
    records = []
    for name, get in TRACKED_FIELDS:
        before, after = get(old), get(new)
        if before != after:
            records.append(record(old.id, name, before, after, actor, changed_at))

    if old_games is not None and new_games is not None:
        before_games, after_games = format_games(old_games), format_games(new_games)
        if before_games.casefold() != after_games.casefold():
            records.append(record(old.id, "games", before_games, after_games, actor, changed_at))
    return records
