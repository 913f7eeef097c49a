"""Settings and admin notification storage."""

import logging
import sqlite3
from typing import TypeVar

from pydantic import TypeAdapter, ValidationError

from ..config import WorkerSettings
from ..models.notification import Notification
from .operations import commit, get_db, to_db_time

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_setting(key: str) -> str | None:
    """Get the raw string value of a setting."""
    conn = get_db()
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return row["value"]


def get_typed_setting(key: str, default: T) -> T:
    """Get a setting converted to the type of ``default``.

    Missing or unparseable values return ``default``.
    """
    raw = get_setting(key)
    if raw is None:
        return default
    try:
        return TypeAdapter(type(default)).validate_python(raw.strip())
    except ValidationError:
        logger.warning(f"Setting {key!r} has invalid value {raw!r}, using default {default!r}")
        return default


def set_setting(key: str, value: object) -> None:
    """Create or overwrite a setting. Booleans are stored as 'true'/'false'."""
    text = str(value).lower() if isinstance(value, bool) else str(value)
    conn = get_db()
    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        """,
        (key, text),
    )
    commit(conn)


def get_all_settings() -> dict[str, str]:
    conn = get_db()
    rows = conn.execute("SELECT key, value FROM settings").fetchall()
    return {row["key"]: row["value"] for row in rows}


def load_worker_settings() -> WorkerSettings:
    """Load worker settings from the store.

    A storage failure yields the defaults so the worker keeps running.
    """
    try:
        raw = get_all_settings()
    except sqlite3.Error as e:
        logger.error(f"Could not read settings, using defaults: {e}")
        return WorkerSettings()
    return WorkerSettings.load(raw)


def save_notification(notification: Notification) -> int:
    """Store a notification for the admin inbox.

    Returns:
        The notification ID.
    """
    conn = get_db()
    cursor = conn.execute(
        """
        INSERT INTO admin_notifications (
            type, priority, title, message, related_entity_type,
            related_entity_id, is_read, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            notification.type.value,
            notification.priority.value,
            notification.title,
            notification.message,
            notification.related_entity_type,
            notification.related_entity_id,
            int(notification.is_read),
            to_db_time(notification.created_at),
        ),
    )
    commit(conn)
    return cursor.lastrowid or 0


def get_notifications(unread_only: bool = False) -> list[Notification]:
    """Get notifications, newest first."""
    conn = get_db()
    query = "SELECT * FROM admin_notifications"
    if unread_only:
        query += " WHERE is_read = 0"
    rows = conn.execute(query + " ORDER BY id DESC").fetchall()
    return [Notification.model_validate(dict(row)) for row in rows]


def mark_notification_read(notification_id: int) -> None:
    conn = get_db()
    conn.execute("UPDATE admin_notifications SET is_read = 1 WHERE id = ?", (notification_id,))
    commit(conn)
