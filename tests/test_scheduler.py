"""Tests for the scrape scheduler."""

import asyncio
from datetime import timedelta

import pytest

from psn_catalog.config import WorkerSettings
from psn_catalog.db.channels import create_channel, get_channel, update_channel_watermark
from psn_catalog.db.messages import get_current_message
from psn_catalog.db.operations import get_account_by_external_id
from psn_catalog.db.settings import set_setting
from psn_catalog.models.base import utc_now
from psn_catalog.models.channel import Channel
from psn_catalog.models.enums import (
    FetchStrategy,
    NotificationPriority,
    NotificationType,
    WorkerActivity,
)
from psn_catalog.models.message import FetchedMessage
from psn_catalog.models.parsed import ParsedAccount
from psn_catalog.sources.base import AuthenticationError, MessageSource, SourceError
from psn_catalog.worker import IngestionScheduler, WorkerState, choose_fetch_strategy, sweep_due

from conftest import listing_text


class FakeSource(MessageSource):
    """In-memory source with scripted failures."""

    def __init__(self, messages=None, failures=None, auth_error=None, on_fetch=None):
        self.messages = messages or {}
        self.failures = failures or {}
        self.auth_error = auth_error
        self.on_fetch = on_fetch
        self.calls = []

    async def authenticate(self):
        if self.auth_error is not None:
            raise self.auth_error

    async def fetch_messages(self, channel_external_id, strategy, parameter):
        self.calls.append((channel_external_id, strategy, parameter))
        if self.on_fetch is not None:
            self.on_fetch()
        if self.failures.get(channel_external_id, 0) > 0:
            self.failures[channel_external_id] -= 1
            raise SourceError(f"{channel_external_id} unavailable")
        return list(self.messages.get(channel_external_id, []))


def fast_settings(**overrides) -> WorkerSettings:
    values = {
        "delay_between_channels_ms": 0,
        "retry_delay_seconds": 0,
        "scrape_interval_minutes": 0,
        "disabled_poll_seconds": 0,
    }
    values.update(overrides)
    return WorkerSettings(**values)


def fast_store_settings():
    """Write fast timings to the settings store for run()."""
    for name, value in fast_settings().model_dump().items():
        set_setting(WorkerSettings.setting_key(name), value)


def listing(external_id: int, **fields) -> FetchedMessage:
    return FetchedMessage(external_id=external_id, text=listing_text(**fields))


@pytest.fixture
def other_channel(channel):
    channel_id = create_channel("@other_shop", "Other Shop", parsing_profile_id=channel.parsing_profile_id)
    return get_channel(channel_id, include_rules=True)


class TestChooseFetchStrategy:
    """Tests for fetch strategy selection."""

    def make_channel(self, **fields) -> Channel:
        return Channel(id=1, external_id="@c", name="C", **fields)

    def test_never_scraped(self):
        """Test a new channel fetches the last N messages."""
        settings = WorkerSettings(initial_fetch_count=50)
        now = utc_now()
        assert choose_fetch_strategy(self.make_channel(), settings, now) == (FetchStrategy.LAST_MESSAGES, 50)
        assert choose_fetch_strategy(self.make_channel(fetch_limit=200), settings, now) == (
            FetchStrategy.LAST_MESSAGES,
            200,
        )

    def test_recent_scrape_incremental(self):
        """Test a channel scraped within the hour fetches after its last ID."""
        now = utc_now()
        channel = self.make_channel(last_scraped_at=now - timedelta(minutes=20), last_scraped_message_id=900)
        assert choose_fetch_strategy(channel, WorkerSettings(), now) == (FetchStrategy.SINCE_LAST_MESSAGE, 900)

    def test_recent_scrape_without_id(self):
        """Test a recent scrape with no known ID falls back to the time window."""
        now = utc_now()
        channel = self.make_channel(last_scraped_at=now - timedelta(minutes=20))
        assert choose_fetch_strategy(channel, WorkerSettings(), now)[0] == FetchStrategy.SINCE_HOURS_AGO

    def test_old_scrape_windowed(self):
        """Test a channel not scraped lately fetches a time window."""
        now = utc_now()
        channel = self.make_channel(last_scraped_at=now - timedelta(hours=5), last_scraped_message_id=900)
        assert choose_fetch_strategy(channel, WorkerSettings(fetch_window_hours=24), now) == (
            FetchStrategy.SINCE_HOURS_AGO,
            24,
        )
        channel.fetch_window_hours = 48
        assert choose_fetch_strategy(channel, WorkerSettings(), now)[1] == 48


class TestSweepDue:
    """Tests for removal sweep gating."""

    def test_disabled(self):
        """Test the sweep does not run unless enabled."""
        channel = Channel(id=1, external_id="@c", name="C")
        assert sweep_due(channel, WorkerSettings(), FetchStrategy.SINCE_HOURS_AGO, utc_now()) is False

    def test_never_for_incremental(self):
        """Test an incremental fetch never triggers the sweep, however stale."""
        now = utc_now()
        channel = Channel(id=1, external_id="@c", name="C", last_removal_check_at=now - timedelta(days=30))
        settings = WorkerSettings(removal_sweep_enabled=True)
        assert sweep_due(channel, settings, FetchStrategy.SINCE_LAST_MESSAGE, now) is False
        assert sweep_due(channel, settings, FetchStrategy.SINCE_HOURS_AGO, now) is True

    def test_interval(self):
        """Test the sweep runs at most once per interval."""
        now = utc_now()
        settings = WorkerSettings(removal_sweep_enabled=True, removal_check_interval_hours=6)
        recent = Channel(id=1, external_id="@c", name="C", last_removal_check_at=now - timedelta(hours=1))
        assert sweep_due(recent, settings, FetchStrategy.LAST_MESSAGES, now) is False
        never = Channel(id=1, external_id="@c", name="C")
        assert sweep_due(never, settings, FetchStrategy.LAST_MESSAGES, now) is True


class TestRunCycle:
    """Tests for one pass over the channels."""

    def test_scrape_and_process(self, channel):
        """Test messages are stored, processed and the watermark advanced."""
        source = FakeSource(messages={"@psn_shop": [listing(10), listing(12, title="Other")]})
        scheduler = IngestionScheduler(source)

        summary = asyncio.run(scheduler.run_cycle(settings=fast_settings()))

        [result] = summary.channels
        assert result.success is True
        assert result.attempts == 1
        assert result.strategy == FetchStrategy.LAST_MESSAGES
        assert (result.fetched, result.new, result.processed) == (2, 2, 2)
        assert summary.messages_found == 2
        assert source.calls == [("@psn_shop", FetchStrategy.LAST_MESSAGES, 50)]

        assert get_account_by_external_id(channel.id, "12").title == "Other"
        reloaded = get_channel(channel.id)
        assert reloaded.last_scraped_message_id == 12
        assert reloaded.last_scraped_at is not None

        status = scheduler.state.snapshot()
        assert status.messages_found_in_last_run == 2
        assert status.last_run_finished_at is not None

    def test_retry_then_success(self, channel, other_channel):
        """Test a channel failing twice succeeds on the third attempt and the cycle goes on."""
        source = FakeSource(
            messages={"@psn_shop": [listing(10)], "@other_shop": [listing(20)]},
            failures={"@psn_shop": 2},
        )
        summary = asyncio.run(IngestionScheduler(source).run_cycle(settings=fast_settings()))

        first, second = summary.channels
        assert first.success is True
        assert first.attempts == 3
        assert first.error is None
        assert second.success is True
        assert second.attempts == 1
        assert [call[0] for call in source.calls] == ["@psn_shop"] * 3 + ["@other_shop"]
        assert summary.failed_count == 0

    def test_exhausted_retries_skip_channel(self, channel, other_channel):
        """Test a channel that keeps failing is skipped without aborting the cycle."""
        source = FakeSource(messages={"@other_shop": [listing(20)]}, failures={"@psn_shop": 10})
        summary = asyncio.run(IngestionScheduler(source).run_cycle(settings=fast_settings(max_retries=3)))

        first, second = summary.channels
        assert first.success is False
        assert first.attempts == 3
        assert first.error.error_type == "SourceError"
        assert "unavailable" in first.error.error_message
        assert second.success is True
        assert summary.failed_count == 1
        # Watermark untouched for the failed channel
        assert get_channel(channel.id).last_scraped_at is None
        assert get_current_message(other_channel.id, 20) is not None

    def test_stop_before_next_channel(self, channel, other_channel):
        """Test a stop request is honored at the top of the next channel."""
        stop_event = asyncio.Event()
        source = FakeSource(messages={"@psn_shop": [listing(10)]}, on_fetch=stop_event.set)

        summary = asyncio.run(IngestionScheduler(source).run_cycle(stop_event, fast_settings()))
        assert summary.cancelled is True
        assert [result.channel_name for result in summary.channels] == ["PSN Shop"]
        # The in-flight channel was fully stored
        assert get_current_message(channel.id, 10) is not None


class TestRemovalSweep:
    """Tests for the sweep inside a channel scrape."""

    def seed_accounts(self, scheduler, channel_id, external_ids, seen_at=None):
        for external_id in external_ids:
            scheduler.engine.reconcile(
                channel_id,
                ParsedAccount(external_id=external_id, title=f"Account {external_id}"),
                seen_at=seen_at,
            )

    def test_no_sweep_for_incremental(self, channel, sink):
        """Test stale accounts survive an incremental scrape."""
        scheduler = IngestionScheduler(FakeSource(messages={"@psn_shop": [listing(105)]}), notifier=sink)
        self.seed_accounts(scheduler, channel.id, ["101", "102", "103"], seen_at=utc_now() - timedelta(days=3))
        update_channel_watermark(channel.id, utc_now() - timedelta(minutes=10), 100)

        settings = fast_settings(removal_sweep_enabled=True, stale_after_days=1)
        result = asyncio.run(scheduler.scrape_channel(get_channel(channel.id), settings))

        assert result.strategy == FetchStrategy.SINCE_LAST_MESSAGE
        assert result.swept is False
        assert get_account_by_external_id(channel.id, "102").is_deleted is False
        assert get_channel(channel.id).last_removal_check_at is None

    def test_windowed_sweep_notifies_bulk_removal(self, channel, sink):
        """Test a windowed scrape removes missing listings and reports a bulk removal."""
        scheduler = IngestionScheduler(FakeSource(messages={"@psn_shop": [listing(100)]}), notifier=sink)
        self.seed_accounts(scheduler, channel.id, ["100", "101", "102", "103"])
        update_channel_watermark(channel.id, utc_now() - timedelta(days=2), 100)

        settings = fast_settings(removal_sweep_enabled=True, bulk_removal_threshold=2)
        result = asyncio.run(scheduler.scrape_channel(get_channel(channel.id), settings))

        assert result.strategy == FetchStrategy.SINCE_HOURS_AGO
        assert result.swept is True
        assert result.removed == 3
        assert get_account_by_external_id(channel.id, "100").is_deleted is False
        assert get_account_by_external_id(channel.id, "103").is_deleted is True
        assert get_channel(channel.id).last_removal_check_at is not None

        [notification] = sink.sent
        assert notification.type == NotificationType.BULK_REMOVAL
        assert notification.priority == NotificationPriority.HIGH
        assert notification.related_entity_id == channel.id


class TestRun:
    """Tests for the long-running loop."""

    def test_auth_failure_halts(self, channel, sink):
        """Test an authentication failure stops the worker in ERROR."""
        source = FakeSource(auth_error=AuthenticationError("session revoked"))
        scheduler = IngestionScheduler(source, notifier=sink)

        asyncio.run(scheduler.run(asyncio.Event()))

        status = scheduler.state.snapshot()
        assert status.activity == WorkerActivity.ERROR
        assert "session revoked" in status.last_error
        assert source.calls == []
        [notification] = sink.sent
        assert notification.type == NotificationType.AUTH_FAILURE
        assert notification.priority == NotificationPriority.CRITICAL

    def test_runs_until_stopped(self, channel):
        """Test the loop finishes its cycle and stops at the next sleep."""
        fast_store_settings()
        stop_event = asyncio.Event()
        source = FakeSource(messages={"@psn_shop": [listing(10)]}, on_fetch=stop_event.set)
        scheduler = IngestionScheduler(source)

        asyncio.run(scheduler.run(stop_event))

        status = scheduler.state.snapshot()
        assert status.activity == WorkerActivity.STOPPED
        assert status.messages_found_in_last_run == 1
        assert len(source.calls) == 1

    def test_disabled_worker_does_not_scrape(self, channel):
        """Test a disabled worker polls without fetching."""
        fast_store_settings()
        state = WorkerState(enabled=False)
        scheduler = IngestionScheduler(FakeSource(), state=state)

        async def run_briefly():
            stop_event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, stop_event.set)
            await scheduler.run(stop_event)

        asyncio.run(run_briefly())

        assert scheduler.source.calls == []
        assert state.snapshot().activity == WorkerActivity.STOPPED
        assert state.snapshot().last_run_started_at is None
