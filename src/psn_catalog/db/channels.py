"""Channel, parsing profile and parsing rule storage."""

from datetime import datetime

from ..models.channel import Channel, ParsingRule
from ..models.enums import ChannelStatus, FieldType
from .operations import RecordNotFoundError, commit, get_db, to_db_time


def create_parsing_profile(name: str) -> int:
    """Create a named parsing profile.

    Returns:
        The profile ID.
    """
    conn = get_db()
    cursor = conn.execute("INSERT INTO parsing_profiles (name) VALUES (?)", (name,))
    commit(conn)
    return cursor.lastrowid or 0


def add_parsing_rule(
    profile_id: int,
    field_type: FieldType,
    pattern: str,
    priority: int = 0,
    is_active: bool = True,
) -> int:
    """Add a rule to a profile.

    The pattern is validated before it is stored, so a profile never holds
    a rule that cannot compile.

    Args:
        profile_id: Parsing profile ID.
        field_type: Field the rule extracts.
        pattern: Regular expression.
        priority: Evaluation order, lower first.
        is_active: Inactive rules are stored but skipped by the parser.

    Returns:
        The rule ID.
    """
    rule = ParsingRule(field_type=field_type, pattern=pattern, priority=priority, is_active=is_active)
    conn = get_db()
    cursor = conn.execute(
        """
        INSERT INTO parsing_rules (profile_id, field_type, pattern, priority, is_active)
        VALUES (?, ?, ?, ?, ?)
        """,
        (profile_id, rule.field_type.value, rule.pattern, rule.priority, int(rule.is_active)),
    )
    commit(conn)
    return cursor.lastrowid or 0


def get_parsing_rules(profile_id: int) -> list[ParsingRule]:
    """Get the rules of a profile in evaluation order."""
    conn = get_db()
    rows = conn.execute(
        """
        SELECT id, field_type, pattern, priority, is_active FROM parsing_rules
        WHERE profile_id = ?
        ORDER BY priority, id
        """,
        (profile_id,),
    ).fetchall()
    return [ParsingRule.model_validate(dict(row)) for row in rows]


def create_channel(
    external_id: str,
    name: str,
    parsing_profile_id: int | None = None,
    status: ChannelStatus = ChannelStatus.ACTIVE,
    fetch_limit: int | None = None,
    fetch_window_hours: int | None = None,
    delay_after_scrape_ms: int | None = None,
) -> int:
    """Register a source channel.

    Returns:
        The channel ID.
    """
    conn = get_db()
    cursor = conn.execute(
        """
        INSERT INTO channels (
            external_id, name, status, parsing_profile_id,
            fetch_limit, fetch_window_hours, delay_after_scrape_ms
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (external_id, name, status.value, parsing_profile_id, fetch_limit, fetch_window_hours, delay_after_scrape_ms),
    )
    commit(conn)
    return cursor.lastrowid or 0


def get_channel(channel_id: int, include_rules: bool = False) -> Channel | None:
    """Get a channel by ID.

    Args:
        channel_id: The channel ID.
        include_rules: Load the rules of the channel's parsing profile. A
            channel without a profile gets an empty rule list.

    Returns:
        The channel, or None if not found.
    """
    conn = get_db()
    row = conn.execute("SELECT * FROM channels WHERE id = ?", (channel_id,)).fetchone()
    if row is None:
        return None
    channel = Channel.model_validate(dict(row))
    if include_rules:
        channel.rules = get_parsing_rules(channel.parsing_profile_id) if channel.parsing_profile_id else []
    return channel


def list_active_channels() -> list[Channel]:
    """Get active channels in scrape order. Rules are not loaded."""
    conn = get_db()
    rows = conn.execute(
        "SELECT * FROM channels WHERE status = ? ORDER BY id",
        (ChannelStatus.ACTIVE.value,),
    ).fetchall()
    return [Channel.model_validate(dict(row)) for row in rows]


def list_channels() -> list[Channel]:
    conn = get_db()
    rows = conn.execute("SELECT * FROM channels ORDER BY id").fetchall()
    return [Channel.model_validate(dict(row)) for row in rows]


def update_channel_watermark(
    channel_id: int,
    scraped_at: datetime,
    last_message_id: int | None,
) -> None:
    """Record a successful scrape.

    Args:
        channel_id: The channel ID.
        scraped_at: When the scrape ran.
        last_message_id: Newest message ID seen. None keeps the stored value.
    """
    conn = get_db()
    cursor = conn.execute(
        """
        UPDATE channels
        SET last_scraped_at = ?,
            last_scraped_message_id = COALESCE(?, last_scraped_message_id)
        WHERE id = ?
        """,
        (to_db_time(scraped_at), last_message_id, channel_id),
    )
    if cursor.rowcount == 0:
        raise RecordNotFoundError(f"Channel {channel_id} not found")
    commit(conn)


def update_removal_check(channel_id: int, checked_at: datetime) -> None:
    """Record when the removal sweep last ran for a channel."""
    conn = get_db()
    conn.execute(
        "UPDATE channels SET last_removal_check_at = ? WHERE id = ?",
        (to_db_time(checked_at), channel_id),
    )
    commit(conn)


def set_channel_status(channel_id: int, status: ChannelStatus) -> None:
    conn = get_db()
    cursor = conn.execute("UPDATE channels SET status = ? WHERE id = ?", (status.value, channel_id))
    if cursor.rowcount == 0:
        raise RecordNotFoundError(f"Channel {channel_id} not found")
    commit(conn)
