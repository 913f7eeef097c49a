"""Tests for change detection and the raw message lifecycle."""

import sqlite3
from decimal import Decimal

import pytest

from psn_catalog.db.messages import get_current_message, get_message, update_message
from psn_catalog.detection import (
    InvalidTransitionError,
    approve_change,
    detect_change_type,
    detect_changes,
    has_content_changed,
    mark_ignored,
    reject_change,
)
from psn_catalog.fingerprint import fingerprint
from psn_catalog.models.changes import ChangeSet
from psn_catalog.models.enums import ChangeType, NotificationPriority, RawMessageStatus
from psn_catalog.models.parsed import ParsedAccount

from conftest import store_message


def parsed(**fields) -> ParsedAccount:
    data = {"external_id": "1", "title": "Account"}
    data.update(fields)
    return ParsedAccount(**data)


class TestDetectChanges:
    """Tests for the structured comparator."""

    def test_none_cases(self):
        """Test missing versions map to NEW, DELETED and NO_CHANGE."""
        assert detect_changes(None, None).change_type == ChangeType.NO_CHANGE
        assert detect_changes(None, parsed()).change_type == ChangeType.NEW
        deleted = detect_changes(parsed(), None)
        assert deleted.change_type == ChangeType.DELETED
        assert deleted.is_high_visibility is True

    def test_identical(self):
        """Test identical versions have no changes."""
        result = detect_changes(parsed(price_ps5=Decimal("10")), parsed(price_ps5=Decimal("10")))
        assert result.change_type == ChangeType.NO_CHANGE
        assert result.changes == []
        assert result.has_changes is False

    def test_price_epsilon(self):
        """Test price differences up to 0.01 are ignored."""
        old = parsed(price_ps5=Decimal("10.00"))
        assert detect_changes(old, parsed(price_ps5=Decimal("10.005"))).changes == []
        assert detect_changes(old, parsed(price_ps5=Decimal("10.01"))).changes == []

        result = detect_changes(old, parsed(price_ps5=Decimal("10.02")))
        assert result.change_type == ChangeType.PRICE_CHANGED
        assert result.changed_fields == ["price_ps5"]
        assert result.changes[0].old_value == "10.00"
        assert result.changes[0].new_value == "10.02"

    def test_price_appearing(self):
        """Test a price added where there was none is a change."""
        result = detect_changes(parsed(), parsed(price_ps4=Decimal("5")))
        assert result.change_type == ChangeType.PRICE_CHANGED

    def test_text_fields_case_insensitive(self):
        """Test text fields ignore case and surrounding whitespace."""
        assert detect_changes(parsed(region="US "), parsed(region="us")).changes == []

    def test_region_only(self):
        """Test a region-only change is classified as such."""
        result = detect_changes(parsed(region="US"), parsed(region="TR"))
        assert result.change_type == ChangeType.REGION_CHANGED

    def test_games_as_set(self):
        """Test game order and case do not matter, membership does."""
        old = parsed(games=["God of War", "Spider-Man"])
        assert detect_changes(old, parsed(games=["spider-man", "God of War"])).changes == []
        result = detect_changes(old, parsed(games=["God of War"]))
        assert result.change_type == ChangeType.GAMES_CHANGED
        assert result.changes[0].old_value == "God of War, Spider-Man"

    def test_sold_dominates(self):
        """Test a sold flip outranks other differences."""
        result = detect_changes(
            parsed(price_ps5=Decimal("10"), is_sold=False),
            parsed(price_ps5=Decimal("20"), region="TR", is_sold=True),
        )
        assert result.change_type == ChangeType.STATUS_CHANGED
        assert result.is_high_visibility is True
        assert "sold_status" in result.changed_fields
        assert result.notification_priority() == NotificationPriority.HIGH

    def test_mixed_changes_are_modified(self):
        """Test several unrelated differences are MODIFIED."""
        result = detect_changes(
            parsed(title="A", price_ps5=Decimal("10")),
            parsed(title="B", price_ps5=Decimal("20")),
        )
        assert result.change_type == ChangeType.MODIFIED
        assert result.changed_fields == ["title", "price_ps5"]


class TestChangeSet:
    """Tests for change set rendering and storage."""

    def test_json_round_trip_keeps_changes(self):
        """Test a stored change set loads back."""
        result = detect_changes(parsed(region="US"), parsed(region="TR"))
        loaded = ChangeSet.from_json(result.to_json())
        assert loaded.change_type == ChangeType.REGION_CHANGED
        assert loaded.changes[0].new_value == "TR"

    def test_from_json_bad_data(self):
        """Test missing or malformed data gives None."""
        assert ChangeSet.from_json(None) is None
        assert ChangeSet.from_json("not json") is None

    def test_summary(self):
        """Test the summary lists changes up to the limit."""
        result = detect_changes(
            parsed(title="A", region="US", seller_info="x"),
            parsed(title="B", region="TR", seller_info="y"),
        )
        lines = result.summary(limit=2).splitlines()
        assert lines[0] == "Change: modified"
        assert lines[1] == "• title: A → B"
        assert lines[-1] == "... and 1 more"


class TestDetectChangeType:
    """Tests for the raw text comparator."""

    def test_created_and_deleted(self):
        """Test empty sides map to CREATED and DELETED."""
        assert detect_change_type(None, "text") == ChangeType.CREATED
        assert detect_change_type("text", "  ") == ChangeType.DELETED

    def test_price_hint(self):
        """Test a changed price figure is PRICE_CHANGED."""
        assert detect_change_type("Price: 10$", "Price: 12$") == ChangeType.PRICE_CHANGED

    def test_status_hint(self):
        """Test a sold marker appearing is STATUS_CHANGED."""
        assert detect_change_type("Account available", "Account sold") == ChangeType.STATUS_CHANGED

    def test_other_edits(self):
        """Test other edits are CONTENT_MODIFIED."""
        assert detect_change_type("Nice account", "Great account") == ChangeType.CONTENT_MODIFIED


class TestHasContentChanged:
    """Tests for fingerprint comparison against storage."""

    def test_first_sight(self, channel):
        """Test an unknown message is new and nothing is written."""
        assert has_content_changed(channel.id, 500, fingerprint("hello")) is True
        assert get_current_message(channel.id, 500) is None

    def test_same_hash(self, channel):
        """Test an unchanged message is not a change."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PROCESSED)
        assert has_content_changed(channel.id, 1, fingerprint("HELLO ")) is False
        assert get_message(message_id).status == RawMessageStatus.PROCESSED

    def test_different_hash(self, channel):
        """Test a changed message moves to PENDING_CHANGE."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PROCESSED)
        assert has_content_changed(channel.id, 1, fingerprint("goodbye")) is True
        message = get_message(message_id)
        assert message.status == RawMessageStatus.PENDING_CHANGE
        assert message.updated_by == "scraper"

    def test_storage_error_counts_as_change(self, channel, monkeypatch):
        """Test a failed lookup reports a change and leaves stored rows alone."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PROCESSED)

        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr("psn_catalog.detection.get_current_message", broken)
        assert has_content_changed(channel.id, 1, fingerprint("hello")) is True

        message = get_message(message_id)
        assert message.status == RawMessageStatus.PROCESSED
        assert message.updated_by is None


class TestReview:
    """Tests for approving and rejecting changes."""

    def test_approve(self, channel):
        """Test an approved change is queued again."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PENDING_CHANGE)
        message = approve_change(message_id, "alice")
        assert message.status == RawMessageStatus.PENDING
        assert message.updated_by == "alice"

    def test_reject(self, channel):
        """Test a rejected change is ignored."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PENDING_CHANGE)
        message = reject_change(message_id, "alice")
        assert message.status == RawMessageStatus.IGNORED
        assert message.processing_result == "Change rejected"

    def test_review_requires_pending_change(self, channel):
        """Test only messages with a pending change can be reviewed."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PROCESSED)
        with pytest.raises(InvalidTransitionError):
            approve_change(message_id, "alice")
        with pytest.raises(InvalidTransitionError):
            reject_change(message_id, "alice")

    def test_invalid_transition(self, channel):
        """Test a processed message cannot be ignored directly."""
        message_id = store_message(channel.id, 1, "hello", RawMessageStatus.PROCESSED)
        with pytest.raises(InvalidTransitionError):
            mark_ignored(message_id, "alice")

    def test_update_rejects_unknown_column(self, channel):
        """Test message updates are limited to known columns."""
        message_id = store_message(channel.id, 1, "hello")
        with pytest.raises(ValueError):
            update_message(message_id, {"is_current": 0}, "alice")
