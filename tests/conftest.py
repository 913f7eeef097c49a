"""Shared test fixtures."""

import pytest

from psn_catalog.db.schema import init_db
from psn_catalog.db.operations import close_db
from psn_catalog.db.channels import add_parsing_rule, create_channel, create_parsing_profile, get_channel
from psn_catalog.db.messages import insert_messages
from psn_catalog.fingerprint import fingerprint
from psn_catalog.models.enums import FieldType, RawMessageStatus
from psn_catalog.models.message import RawMessageCreate
from psn_catalog.notifications import NotificationSink
import psn_catalog.db.operations as db_ops


# Rules of a typical listing channel
LISTING_RULES = [
    (FieldType.PRICE_PS4, r"ps4\s*price\s*:\s*([\d.,]+)", 0),
    (FieldType.PRICE_PS5, r"ps5\s*price\s*:\s*([\d.,]+)", 0),
    (FieldType.REGION, r"region\s*:\s*(\w+)", 0),
    (FieldType.CAPACITY, r"capacity\s*:\s*(.+)$", 0),
    (FieldType.GUARANTEE, r"guarantee\s*:\s*(.+)$", 0),
    (FieldType.ORIGINAL_MAIL, r"original\s*mail\s*:\s*(\w+)", 0),
    (FieldType.GAMES_BLOCK_START, r"games\s*:", 0),
    (FieldType.GAMES_BLOCK_END, r"^\s*prices?\b", 0),
]


def listing_text(
    title: str = "Premium US account",
    ps5_price: str = "45.50",
    region: str = "US",
    games: tuple[str, ...] = ("God of War", "Spider-Man"),
    sold: bool = False,
) -> str:
    """Build a listing message matching LISTING_RULES."""
    lines = [f"🎮 {title}", f"Region: {region}", "Capacity: Z2 hybrid", "Games:"]
    lines += [f"- {game}" for game in games]
    lines += ["Prices", f"PS5 price: {ps5_price}"]
    if sold:
        lines.append("SOLD")
    return "\n".join(lines)


@pytest.fixture
def test_db(tmp_path):
    """Create a temporary test database."""
    db_path = tmp_path / "test.db"
    # Reset module-level connection
    db_ops._connection = None
    db_ops._transaction_depth = 0
    conn = init_db(db_path)
    db_ops._connection = conn
    yield conn
    close_db()


@pytest.fixture
def profile_id(test_db):
    """Parsing profile with the listing rules."""
    profile = create_parsing_profile("default")
    for field_type, pattern, priority in LISTING_RULES:
        add_parsing_rule(profile, field_type, pattern, priority=priority)
    return profile


@pytest.fixture
def channel(test_db, profile_id):
    """Active channel with rules loaded."""
    channel_id = create_channel("@psn_shop", "PSN Shop", parsing_profile_id=profile_id)
    return get_channel(channel_id, include_rules=True)


def store_message(channel_id: int, external_id: int, text: str, status=RawMessageStatus.PENDING) -> int:
    """Insert a raw message as the current version of a listing."""
    [message_id] = insert_messages([
        RawMessageCreate(
            channel_id=channel_id,
            external_message_id=external_id,
            text=text,
            content_hash=fingerprint(text),
            status=status,
        )
    ])
    return message_id


class RecordingSink(NotificationSink):
    """Keeps sent notifications in memory."""

    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)


@pytest.fixture
def sink():
    return RecordingSink()
