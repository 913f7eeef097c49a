"""Raw message storage."""

from typing import Any

from ..models.base import utc_now
from ..models.enums import RawMessageStatus
from ..models.message import RawMessage, RawMessageCreate
from .operations import RecordNotFoundError, commit, get_db, to_db_time, to_db_value


# Columns update_message may write
MESSAGE_COLUMNS = frozenset({
    "text",
    "received_at",
    "content_hash",
    "status",
    "account_id",
    "change_details",
    "previous_message_id",
    "processed_at",
    "processing_result",
})


def insert_messages(messages: list[RawMessageCreate]) -> list[int]:
    """Insert a batch of new messages.

    Args:
        messages: Messages to store as the current version of their listing.

    Returns:
        IDs of the inserted rows, in input order.
    """
    conn = get_db()
    now = to_db_time(utc_now())
    ids = []
    for message in messages:
        cursor = conn.execute(
            """
            INSERT INTO raw_messages (
                channel_id, external_message_id, text, received_at,
                content_hash, status, is_current, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 1, ?)
            """,
            (
                message.channel_id,
                message.external_message_id,
                message.text,
                to_db_time(message.received_at),
                message.content_hash,
                message.status.value,
                now,
            ),
        )
        ids.append(cursor.lastrowid or 0)
    commit(conn)
    return ids


def get_message(message_id: int) -> RawMessage | None:
    """Get a raw message by ID."""
    conn = get_db()
    row = conn.execute("SELECT * FROM raw_messages WHERE id = ?", (message_id,)).fetchone()
    if row is None:
        return None
    return RawMessage.model_validate(dict(row))


def get_current_message(channel_id: int, external_message_id: int) -> RawMessage | None:
    """Get the current version of a listing's message.

    Args:
        channel_id: Source channel ID.
        external_message_id: Message ID within the channel.

    Returns:
        The head of the version chain, or None if the message was never stored.
    """
    conn = get_db()
    row = conn.execute(
        """
        SELECT * FROM raw_messages
        WHERE channel_id = ? AND external_message_id = ? AND is_current = 1
        """,
        (channel_id, external_message_id),
    ).fetchone()
    if row is None:
        return None
    return RawMessage.model_validate(dict(row))


def get_messages_by_status(
    status: RawMessageStatus,
    channel_id: int | None = None,
    limit: int | None = None,
) -> list[RawMessage]:
    """Get current messages with the given status, oldest listing first."""
    conn = get_db()
    query = "SELECT * FROM raw_messages WHERE status = ? AND is_current = 1"
    params: list[Any] = [status.value]
    if channel_id is not None:
        query += " AND channel_id = ?"
        params.append(channel_id)
    query += " ORDER BY channel_id, external_message_id"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    rows = conn.execute(query, params).fetchall()
    return [RawMessage.model_validate(dict(row)) for row in rows]


def get_message_versions(channel_id: int, external_message_id: int) -> list[RawMessage]:
    """Get every stored version of a listing, newest first."""
    head = get_current_message(channel_id, external_message_id)
    versions = []
    while head is not None:
        versions.append(head)
        head = get_message(head.previous_message_id) if head.previous_message_id else None
    return versions


def update_message(message_id: int, fields: dict[str, Any], actor: str) -> None:
    """Overwrite columns of a message and stamp the update.

    Args:
        message_id: The message ID.
        fields: Column name -> new value. Only MESSAGE_COLUMNS are accepted.
        actor: Who made the change ('scraper' or an admin identity).
    """
    unknown = set(fields) - MESSAGE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update message columns: {sorted(unknown)}")

    conn = get_db()
    assignments = "".join(f"{column} = ?, " for column in fields)
    cursor = conn.execute(
        f"UPDATE raw_messages SET {assignments}updated_at = ?, updated_by = ? WHERE id = ?",
        [to_db_value(value) for value in fields.values()] + [to_db_time(utc_now()), actor, message_id],
    )
    if cursor.rowcount == 0:
        raise RecordNotFoundError(f"Raw message {message_id} not found")
    commit(conn)


def archive_version(message: RawMessage) -> int:
    """Store a copy of ``message`` as a superseded version.

    Args:
        message: Snapshot of the head taken before it is overwritten.

    Returns:
        ID of the archived copy.
    """
    conn = get_db()
    cursor = conn.execute(
        """
        INSERT INTO raw_messages (
            channel_id, external_message_id, text, received_at, content_hash,
            status, is_current, account_id, change_details, previous_message_id,
            processed_at, processing_result, created_at, updated_at, updated_by
        )
        VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            message.channel_id,
            message.external_message_id,
            message.text,
            to_db_time(message.received_at),
            message.content_hash,
            message.status.value,
            message.account_id,
            message.change_details,
            message.previous_message_id,
            to_db_time(message.processed_at),
            message.processing_result,
            to_db_time(message.created_at),
            to_db_time(message.updated_at),
            message.updated_by,
        ),
    )
    commit(conn)
    return cursor.lastrowid or 0


def count_messages_by_status(channel_id: int | None = None) -> dict[RawMessageStatus, int]:
    """Count current messages per status. Every status is present in the result."""
    conn = get_db()
    query = "SELECT status, COUNT(*) AS total FROM raw_messages WHERE is_current = 1"
    params: list[Any] = []
    if channel_id is not None:
        query += " AND channel_id = ?"
        params.append(channel_id)
    rows = conn.execute(query + " GROUP BY status", params).fetchall()
    counts = {status: 0 for status in RawMessageStatus}
    for row in rows:
        counts[RawMessageStatus(row["status"])] = row["total"]
    return counts
