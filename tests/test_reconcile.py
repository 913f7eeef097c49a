"""Tests for merging parsed listings into the catalog."""

from datetime import timedelta
from decimal import Decimal

import pytest

from psn_catalog.db.messages import get_message, update_message
from psn_catalog.db.operations import (
    RecordNotFoundError,
    get_account,
    get_account_by_external_id,
    get_account_games,
    get_account_history,
    get_all_accounts,
)
from psn_catalog.fingerprint import fingerprint
from psn_catalog.models.base import utc_now
from psn_catalog.models.enums import AccountCapacity, RawMessageStatus, StockStatus
from psn_catalog.models.parsed import ParsedAccount
from psn_catalog.reconcile import REMOVED_REASON, ReconcileOutcome, ReconciliationEngine

from conftest import listing_text, store_message


def parsed(external_id: str = "10", **fields) -> ParsedAccount:
    data = {"external_id": external_id, "title": f"Account {external_id}", "price_ps5": Decimal("30")}
    data.update(fields)
    return ParsedAccount(**data)


@pytest.fixture
def engine():
    return ReconciliationEngine()


class TestReconcile:
    """Tests for the scraper reconcile path."""

    def test_create_in_stock(self, channel, engine):
        """Test an unsold new listing becomes an in-stock account."""
        result = engine.reconcile(channel.id, parsed(games=["God of War", "Horizon"]))
        assert result.outcome == ReconcileOutcome.CREATED
        assert result.changed_catalog is True

        account = get_account(result.account_id, include_games=True)
        assert account.stock_status == StockStatus.IN_STOCK
        assert account.is_deleted is False
        assert account.price_ps5 == Decimal("30")
        assert account.capacity == AccountCapacity.OFFLINE_ONLY
        assert account.last_scraped_at is not None
        assert [game.title for game in account.games] == ["God of War", "Horizon"]

    def test_known_capacity_kept(self, channel, engine):
        """Test a parsed capacity tier is stored as is."""
        result = engine.reconcile(channel.id, parsed(capacity=AccountCapacity.HYBRID))
        assert get_account(result.account_id).capacity == AccountCapacity.HYBRID

    def test_sold_new_listing_not_created(self, channel, engine):
        """Test a listing already sold on first sight creates nothing."""
        result = engine.reconcile(channel.id, parsed(is_sold=True))
        assert result.outcome == ReconcileOutcome.SOLD_BEFORE_SEEN
        assert result.account_id is None
        assert get_all_accounts(channel.id) == []

    def test_nothing_to_reconcile(self, channel, engine):
        """Test a missing parse result is skipped."""
        assert engine.reconcile(channel.id, None).outcome == ReconcileOutcome.SKIPPED
        assert engine.reconcile(channel.id, parsed(external_id="")).outcome == ReconcileOutcome.SKIPPED

    def test_marked_sold_once(self, channel, engine):
        """Test the sold transition is recorded once, not on every repeat."""
        account_id = engine.reconcile(channel.id, parsed()).account_id

        result = engine.reconcile(channel.id, parsed(is_sold=True))
        assert result.outcome == ReconcileOutcome.MARKED_SOLD
        assert result.history_records == 2
        account = get_account(account_id)
        assert account.is_deleted is True
        assert account.stock_status == StockStatus.OUT_OF_STOCK

        repeat = engine.reconcile(channel.id, parsed(is_sold=True))
        assert repeat.outcome == ReconcileOutcome.UPDATED
        assert repeat.history_records == 0
        history = get_account_history(account_id)
        assert [(h.field_name, h.old_value, h.new_value) for h in history] == [
            ("is_deleted", "false", "true"),
            ("stock_status", "in_stock", "out_of_stock"),
        ]

    def test_relisted(self, channel, engine):
        """Test a sold account returning unsold is restored."""
        account_id = engine.reconcile(channel.id, parsed()).account_id
        engine.reconcile(channel.id, parsed(is_sold=True))

        result = engine.reconcile(channel.id, parsed(price_ps5=Decimal("25")))
        assert result.outcome == ReconcileOutcome.RELISTED
        account = get_account(account_id)
        assert account.is_deleted is False
        assert account.stock_status == StockStatus.IN_STOCK
        assert account.price_ps5 == Decimal("25")

    def test_update_overwrites_basic_fields(self, channel, engine):
        """Test an update refreshes title, prices and region without history."""
        account_id = engine.reconcile(channel.id, parsed(region="US")).account_id
        result = engine.reconcile(channel.id, parsed(title="Renamed", region="TR", price_ps4=Decimal("12")))
        assert result.outcome == ReconcileOutcome.UPDATED
        account = get_account(account_id)
        assert account.title == "Renamed"
        assert account.region == "TR"
        assert account.price_ps4 == Decimal("12")
        assert get_account_history(account_id) == []


class TestProcessAndSave:
    """Tests for the admin save path."""

    def test_create_from_message(self, channel, engine):
        """Test saving a message creates the account and links its games."""
        message_id = store_message(channel.id, 200, listing_text())
        result = engine.process_and_save(message_id, actor="alice")
        assert result.outcome == ReconcileOutcome.CREATED

        account = get_account(result.account_id, include_games=True)
        assert account.external_id == "200"
        assert account.capacity == AccountCapacity.HYBRID
        assert {game.title for game in account.games} == {"God of War", "Spider-Man"}

        message = get_message(message_id)
        assert message.status == RawMessageStatus.PROCESSED
        assert message.account_id == result.account_id
        assert message.updated_by == "alice"

    def test_update_diffs_fields_and_games(self, channel, engine):
        """Test an update records each changed field and syncs games by difference."""
        message_id = store_message(channel.id, 200, listing_text())
        account_id = engine.process_and_save(message_id).account_id

        new_text = listing_text(ps5_price="40", games=("God of War", "Horizon"))
        update_message(message_id, {"text": new_text, "content_hash": fingerprint(new_text)}, "scraper")
        result = engine.process_and_save(message_id, actor="alice")

        assert result.outcome == ReconcileOutcome.UPDATED
        assert result.account_id == account_id
        history = {h.field_name: h for h in get_account_history(account_id)}
        assert set(history) == {"price_ps5", "games"}
        assert history["price_ps5"].old_value == "45.5"
        assert history["price_ps5"].new_value == "40"
        assert history["games"].new_value == "God of War, Horizon"
        assert history["games"].changed_by == "alice"
        assert [game.title for game in get_account_games(account_id)] == ["God of War", "Horizon"]

    def test_edits_override_parsed_values(self, channel, engine):
        """Test operator edits replace parsed fields."""
        message_id = store_message(channel.id, 200, listing_text())
        result = engine.process_and_save(message_id, edits={"region": "EU", "price_ps4": "20", "title": None})
        account = get_account(result.account_id)
        assert account.region == "EU"
        assert account.price_ps4 == Decimal("20")
        assert account.title == "Premium US account"

    def test_unknown_edit_rejected(self, channel, engine):
        """Test an edit naming an unknown field fails."""
        message_id = store_message(channel.id, 200, listing_text())
        with pytest.raises(ValueError):
            engine.process_and_save(message_id, edits={"colour": "red"})

    def test_missing_message(self, test_db, engine):
        """Test saving a message that does not exist fails."""
        with pytest.raises(RecordNotFoundError):
            engine.process_and_save(999)

    def test_sold_new_listing_ignored(self, channel, engine):
        """Test a sold listing never seen before is ignored, not created."""
        message_id = store_message(channel.id, 200, listing_text(sold=True))
        result = engine.process_and_save(message_id)
        assert result.outcome == ReconcileOutcome.SOLD_BEFORE_SEEN
        assert get_account_by_external_id(channel.id, "200") is None
        assert get_message(message_id).status == RawMessageStatus.IGNORED

    def test_sold_new_listing_already_processed(self, channel, engine):
        """Test saving a sold listing the scraper already handled changes nothing."""
        message_id = store_message(channel.id, 200, listing_text(sold=True), RawMessageStatus.PROCESSED)
        result = engine.process_and_save(message_id)
        assert result.outcome == ReconcileOutcome.SOLD_BEFORE_SEEN
        assert get_account_by_external_id(channel.id, "200") is None
        assert get_message(message_id).status == RawMessageStatus.PROCESSED

    def test_pending_change_saved(self, channel, engine):
        """Test a message with a pending change can be saved directly."""
        message_id = store_message(channel.id, 200, listing_text(), RawMessageStatus.PENDING_CHANGE)
        result = engine.process_and_save(message_id)
        assert result.outcome == ReconcileOutcome.CREATED
        assert get_message(message_id).status == RawMessageStatus.PROCESSED

    def test_sold_existing_records_deletion(self, channel, engine):
        """Test saving a sold version of a known listing soft-deletes it."""
        message_id = store_message(channel.id, 200, listing_text())
        account_id = engine.process_and_save(message_id).account_id

        sold_text = listing_text(sold=True)
        update_message(message_id, {"text": sold_text}, "scraper")
        engine.process_and_save(message_id)

        account = get_account(account_id)
        assert account.is_deleted is True
        assert account.stock_status == StockStatus.OUT_OF_STOCK
        fields = {h.field_name for h in get_account_history(account_id)}
        assert fields == {"stock_status", "is_deleted"}


class TestSweepRemoved:
    """Tests for the removal sweep."""

    def test_unseen_in_window_removed(self, channel, engine):
        """Test a listing missing from the fetched range is removed."""
        for external_id in ("100", "101", "102", "103"):
            engine.reconcile(channel.id, parsed(external_id))

        removed = engine.sweep_removed(channel.id, {"101", "103"}, utc_now() - timedelta(days=7))

        missing = get_account_by_external_id(channel.id, "102")
        assert removed == [missing.id]
        assert missing.is_deleted is True
        assert missing.stock_status == StockStatus.OUT_OF_STOCK
        assert missing.notes.startswith("Auto-removed: Not found in channel scrape at")
        # Older than the fetched range, so no signal
        assert get_account_by_external_id(channel.id, "100").is_deleted is False
        assert get_account_by_external_id(channel.id, "101").is_deleted is False

    def test_stale_removed(self, channel, engine):
        """Test a listing not seen for too long is removed even below the range."""
        old = engine.reconcile(channel.id, parsed("5"), seen_at=utc_now() - timedelta(days=10)).account_id
        engine.reconcile(channel.id, parsed("100"))

        removed = engine.sweep_removed(channel.id, {"100"}, utc_now() - timedelta(days=7))
        assert removed == [old]
        history = get_account_history(old)
        assert [h.field_name for h in history] == ["is_deleted", "stock_status"]

    def test_linked_message_deleted(self, channel, engine):
        """Test the raw message of a removed account is marked deleted."""
        message_id = store_message(channel.id, 102, "listing", RawMessageStatus.PROCESSED)
        engine.reconcile(channel.id, parsed("102"), raw_message_id=message_id)
        engine.reconcile(channel.id, parsed("103"))

        engine.sweep_removed(channel.id, {"101", "103"}, utc_now() - timedelta(days=7))
        message = get_message(message_id)
        assert message.status == RawMessageStatus.DELETED
        assert message.processing_result == REMOVED_REASON

    def test_empty_scrape_only_removes_stale(self, channel, engine):
        """Test an empty ID set removes nothing that is still fresh."""
        engine.reconcile(channel.id, parsed("100"))
        assert engine.sweep_removed(channel.id, set(), utc_now() - timedelta(days=7)) == []

    def test_touch_seen(self, channel, engine):
        """Test seen listings get a fresh last-seen time."""
        account_id = engine.reconcile(channel.id, parsed("100"), seen_at=utc_now() - timedelta(days=10)).account_id
        assert engine.touch_seen(channel.id, ["100", "999"], utc_now()) == 1
        assert get_account(account_id).last_scraped_at > utc_now() - timedelta(minutes=1)
