"""Database operations: connection handling, accounts, games and history."""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from ..models.account import Account, AccountCreate, Game
from ..models.base import ensure_utc, utc_now
from ..models.enums import StockStatus
from ..models.history import ChangeRecord
from .schema import init_db


_connection: sqlite3.Connection | None = None
_transaction_depth = 0

# Columns update_account may write
ACCOUNT_COLUMNS = frozenset({
    "title",
    "description",
    "price_ps4",
    "price_ps5",
    "region",
    "capacity",
    "has_original_mail",
    "guarantee_minutes",
    "seller_info",
    "additional_info",
    "stock_status",
    "is_deleted",
    "last_scraped_at",
    "notes",
    "raw_message_id",
})


class RecordNotFoundError(LookupError):
    """Raised when an operation targets a row that does not exist."""


def get_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Get database connection, initializing if needed.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Database connection.
    """
    global _connection
    if _connection is None:
        _connection = init_db(db_path)
    return _connection


def close_db() -> None:
    """Close the database connection."""
    global _connection, _transaction_depth
    if _connection is not None:
        _connection.close()
        _connection = None
    _transaction_depth = 0


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Group writes into one atomic unit.

    Nested blocks join the outermost one; only the outermost block commits,
    and an exception escaping any block rolls everything back.
    """
    global _transaction_depth
    conn = get_db()
    _transaction_depth += 1
    try:
        yield conn
    except BaseException:
        _transaction_depth -= 1
        if _transaction_depth == 0:
            conn.rollback()
        raise
    _transaction_depth -= 1
    if _transaction_depth == 0:
        conn.commit()


def commit(conn: sqlite3.Connection) -> None:
    """Commit unless running inside ``transaction()``."""
    if _transaction_depth == 0:
        conn.commit()


def to_db_time(value: datetime | None) -> str | None:
    """Format a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def to_db_value(value: Any) -> Any:
    """Convert a model value into something sqlite3 stores."""
    if isinstance(value, datetime):
        return to_db_time(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


# --- accounts ---------------------------------------------------------------


def insert_account(account: AccountCreate, last_scraped_at: datetime | None = None) -> int:
    """Insert a new account.

    Args:
        account: Account data.
        last_scraped_at: When the listing was seen.

    Returns:
        The new account ID.
    """
    conn = get_db()
    data = account.model_dump()
    data["last_scraped_at"] = last_scraped_at
    data["created_at"] = utc_now()
    columns = list(data)
    cursor = conn.execute(
        f"INSERT INTO accounts ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
        [to_db_value(data[column]) for column in columns],
    )
    commit(conn)
    return cursor.lastrowid or 0


def update_account(account_id: int, fields: dict[str, Any]) -> None:
    """Overwrite the given columns of an account.

    Args:
        account_id: The account ID.
        fields: Column name -> new value. Only ACCOUNT_COLUMNS are accepted.
    """
    unknown = set(fields) - ACCOUNT_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update account columns: {sorted(unknown)}")
    if not fields:
        return

    conn = get_db()
    assignments = ", ".join(f"{column} = ?" for column in fields)
    cursor = conn.execute(
        f"UPDATE accounts SET {assignments}, updated_at = ? WHERE id = ?",
        [to_db_value(value) for value in fields.values()] + [to_db_time(utc_now()), account_id],
    )
    if cursor.rowcount == 0:
        raise RecordNotFoundError(f"Account {account_id} not found")
    commit(conn)


def _account_from_row(row: sqlite3.Row, include_games: bool) -> Account:
    account = Account.model_validate(dict(row))
    if include_games:
        account.games = get_account_games(account.id)
    return account


def get_account(account_id: int, include_games: bool = False) -> Account | None:
    """Get an account by ID.

    Args:
        account_id: The account ID.
        include_games: Load the game association.

    Returns:
        The account, or None if not found.
    """
    conn = get_db()
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    if row is None:
        return None
    return _account_from_row(row, include_games)


def get_account_by_external_id(
    channel_id: int,
    external_id: str,
    include_games: bool = False,
) -> Account | None:
    """Get an account by its natural key.

    Args:
        channel_id: Source channel ID.
        external_id: Listing ID within the channel.
        include_games: Load the game association.

    Returns:
        The account, or None if not found.
    """
    conn = get_db()
    row = conn.execute(
        "SELECT * FROM accounts WHERE channel_id = ? AND external_id = ?",
        (channel_id, external_id),
    ).fetchone()
    if row is None:
        return None
    return _account_from_row(row, include_games)


def get_all_accounts(channel_id: int | None = None, include_deleted: bool = True) -> list[Account]:
    """Get accounts, optionally filtered by channel."""
    conn = get_db()
    query = "SELECT * FROM accounts WHERE 1 = 1"
    params: list[Any] = []
    if channel_id is not None:
        query += " AND channel_id = ?"
        params.append(channel_id)
    if not include_deleted:
        query += " AND is_deleted = 0"
    rows = conn.execute(query + " ORDER BY id", params).fetchall()
    return [Account.model_validate(dict(row)) for row in rows]


def get_active_accounts(channel_id: int) -> list[Account]:
    """Get accounts of a channel that are not deleted and in stock."""
    conn = get_db()
    rows = conn.execute(
        "SELECT * FROM accounts WHERE channel_id = ? AND is_deleted = 0 AND stock_status = ? ORDER BY id",
        (channel_id, StockStatus.IN_STOCK.value),
    ).fetchall()
    return [Account.model_validate(dict(row)) for row in rows]


def get_stale_accounts(channel_id: int, cutoff: datetime) -> list[Account]:
    """Get active accounts not seen since ``cutoff``.

    Accounts never scraped count as stale.
    """
    conn = get_db()
    rows = conn.execute(
        """
        SELECT * FROM accounts
        WHERE channel_id = ? AND is_deleted = 0 AND stock_status = ?
          AND (last_scraped_at IS NULL OR last_scraped_at < ?)
        ORDER BY id
        """,
        (channel_id, StockStatus.IN_STOCK.value, to_db_time(cutoff)),
    ).fetchall()
    return [Account.model_validate(dict(row)) for row in rows]


def touch_accounts(channel_id: int, external_ids: Iterable[str], seen_at: datetime) -> int:
    """Refresh last_scraped_at for listings present in a scrape.

    Returns:
        Number of accounts updated.
    """
    ids = list(external_ids)
    if not ids:
        return 0
    conn = get_db()
    updated = 0
    # Stay below SQLite's bound-parameter limit
    for start in range(0, len(ids), 500):
        chunk = ids[start:start + 500]
        cursor = conn.execute(
            f"UPDATE accounts SET last_scraped_at = ? WHERE channel_id = ? "
            f"AND external_id IN ({', '.join('?' for _ in chunk)})",
            [to_db_time(seen_at), channel_id, *chunk],
        )
        updated += cursor.rowcount
    commit(conn)
    return updated


# --- games ------------------------------------------------------------------


def title_key(title: str) -> str:
    """Lookup key of a game title: trimmed and casefolded."""
    return title.strip().casefold()


def get_game_by_title(title: str) -> Game | None:
    """Find a game by exact, case-insensitive title."""
    conn = get_db()
    row = conn.execute("SELECT id, title FROM games WHERE title_key = ?", (title_key(title),)).fetchone()
    if row is None:
        return None
    return Game.model_validate(dict(row))


def get_or_create_games(titles: Iterable[str]) -> list[Game]:
    """Resolve titles to games, creating the missing ones.

    Titles are trimmed and deduplicated case-insensitively; blank titles
    are skipped. Order of first appearance is kept.
    """
    unique: dict[str, str] = {}
    for title in titles:
        cleaned = title.strip()
        if cleaned and title_key(cleaned) not in unique:
            unique[title_key(cleaned)] = cleaned

    conn = get_db()
    games = []
    for key, title in unique.items():
        game = get_game_by_title(title)
        if game is None:
            cursor = conn.execute("INSERT INTO games (title, title_key) VALUES (?, ?)", (title, key))
            game = Game(id=cursor.lastrowid or 0, title=title)
        games.append(game)
    commit(conn)
    return games


def get_account_games(account_id: int) -> list[Game]:
    """Get the games associated with an account, ordered by title."""
    conn = get_db()
    rows = conn.execute(
        """
        SELECT g.id, g.title FROM games g
        JOIN account_games ag ON ag.game_id = g.id
        WHERE ag.account_id = ?
        ORDER BY g.title COLLATE NOCASE
        """,
        (account_id,),
    ).fetchall()
    return [Game.model_validate(dict(row)) for row in rows]


def sync_account_games(account_id: int, game_ids: Iterable[int]) -> tuple[set[int], set[int]]:
    """Make the account's game set equal to ``game_ids``.

    Only the difference is written; associations present on both sides
    are left untouched.

    Returns:
        Tuple of (added_ids, removed_ids).
    """
    conn = get_db()
    wanted = set(game_ids)
    current = {
        row["game_id"]
        for row in conn.execute(
            "SELECT game_id FROM account_games WHERE account_id = ?", (account_id,)
        ).fetchall()
    }
    removed = current - wanted
    added = wanted - current
    conn.executemany(
        "DELETE FROM account_games WHERE account_id = ? AND game_id = ?",
        [(account_id, game_id) for game_id in sorted(removed)],
    )
    conn.executemany(
        "INSERT INTO account_games (account_id, game_id) VALUES (?, ?)",
        [(account_id, game_id) for game_id in sorted(added)],
    )
    commit(conn)
    return added, removed


# --- history ----------------------------------------------------------------


def add_history(records: Iterable[ChangeRecord]) -> int:
    """Append change records.

    Returns:
        Number of records written.
    """
    rows = [
        (
            record.account_id,
            record.field_name,
            record.old_value,
            record.new_value,
            to_db_time(record.changed_at),
            record.changed_by,
        )
        for record in records
    ]
    if not rows:
        return 0
    conn = get_db()
    conn.executemany(
        """
        INSERT INTO account_history (account_id, field_name, old_value, new_value, changed_at, changed_by)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    commit(conn)
    return len(rows)


def get_account_history(account_id: int) -> list[ChangeRecord]:
    """Get the change log of an account, oldest first."""
    conn = get_db()
    rows = conn.execute(
        "SELECT * FROM account_history WHERE account_id = ? ORDER BY id",
        (account_id,),
    ).fetchall()
    return [ChangeRecord.model_validate(dict(row)) for row in rows]
