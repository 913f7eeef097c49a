"""Periodic scrape loop over all active channels."""

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..config import WorkerSettings
from ..db.channels import get_channel, list_active_channels, update_channel_watermark, update_removal_check
from ..db.settings import load_worker_settings
from ..models.base import utc_now
from ..models.channel import Channel
from ..models.enums import FetchStrategy, NotificationPriority, NotificationType, WorkerActivity
from ..models.message import FetchedMessage
from ..models.notification import Notification
from ..notifications import NotificationSink, notify
from ..processing import ProcessingService
from ..sources.base import MessageSource
from .state import WorkerState

logger = logging.getLogger(__name__)


@dataclass
class ChannelFailure:
    """Record of the last error while scraping a channel."""

    channel: str
    error_type: str
    error_message: str
    traceback: str
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_exception(cls, channel: str, exc: Exception) -> "ChannelFailure":
        """Create a ChannelFailure from an exception."""
        return cls(
            channel=channel,
            error_type=type(exc).__name__,
            error_message=str(exc),
            traceback=traceback.format_exc(),
        )


@dataclass
class ChannelResult:
    """Result of scraping one channel."""

    channel_id: int
    channel_name: str
    strategy: FetchStrategy | None = None
    attempts: int = 0
    success: bool = False
    fetched: int = 0
    new: int = 0
    changed: int = 0
    processed: int = 0
    removed: int = 0
    swept: bool = False
    error: ChannelFailure | None = None

    def __repr__(self) -> str:
        state = "ok" if self.success else "failed"
        return f"ChannelResult({self.channel_name}: {state} after {self.attempts} attempts, {self.fetched} fetched)"


@dataclass
class CycleSummary:
    """Result of one pass over all active channels."""

    started_at: datetime
    finished_at: datetime | None = None
    channels: list[ChannelResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def messages_found(self) -> int:
        return sum(result.fetched for result in self.channels)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.channels if not result.success)

    @property
    def duration(self) -> timedelta | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


def choose_fetch_strategy(
    channel: Channel,
    settings: WorkerSettings,
    now: datetime,
) -> tuple[FetchStrategy, int]:
    """Pick how to fetch a channel from its watermark.

    Never scraped: the last N messages. Scraped within the incremental
    window and a message ID is known: everything after that ID. Otherwise:
    everything from the last N hours.

    Returns:
        Tuple of (strategy, parameter).
    """
    if channel.last_scraped_at is None:
        return FetchStrategy.LAST_MESSAGES, channel.fetch_limit or settings.initial_fetch_count

    recent = now - channel.last_scraped_at < timedelta(hours=settings.incremental_window_hours)
    if recent and channel.last_scraped_message_id is not None:
        return FetchStrategy.SINCE_LAST_MESSAGE, channel.last_scraped_message_id

    return FetchStrategy.SINCE_HOURS_AGO, channel.fetch_window_hours or settings.fetch_window_hours


def sweep_due(
    channel: Channel,
    settings: WorkerSettings,
    strategy: FetchStrategy,
    now: datetime,
) -> bool:
    """Whether the removal sweep should run after this scrape.

    An incremental fetch never triggers it: a missing ID in it says
    nothing about removal.
    """
    if not settings.removal_sweep_enabled:
        return False
    if strategy == FetchStrategy.SINCE_LAST_MESSAGE:
        return False
    if channel.last_removal_check_at is None:
        return True
    return now - channel.last_removal_check_at >= timedelta(hours=settings.removal_check_interval_hours)


class IngestionScheduler:
    """Runs scrape cycles until stopped.

    Channels are scraped one after another with a pause in between. Each
    channel gets a bounded number of attempts; a channel that keeps failing
    is logged and skipped for this cycle.
    """

    def __init__(
        self,
        source: MessageSource,
        state: WorkerState | None = None,
        processing: ProcessingService | None = None,
        notifier: NotificationSink | None = None,
    ):
        self.source = source
        self.state = state or WorkerState()
        self.notifier = notifier
        self.processing = processing or ProcessingService(notifier=notifier)
        self.engine = self.processing.engine

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Authenticate, then run cycles until ``stop_event`` is set.

        An authentication failure leaves the worker in ERROR and returns;
        it is not retried.
        """
        if stop_event is None:
            stop_event = asyncio.Event()

        self.state.set_activity(WorkerActivity.INITIALIZING)
        self.state.set_activity(WorkerActivity.AUTHENTICATING)
        try:
            await self.source.authenticate()
        except Exception as e:
            logger.error(f"Authentication failed, worker halted: {e}")
            self.state.report_error(f"Authentication failed: {e}", WorkerActivity.ERROR)
            notify(self.notifier, Notification(
                type=NotificationType.AUTH_FAILURE,
                priority=NotificationPriority.CRITICAL,
                title="Scraper authentication failed",
                message=f"{type(e).__name__}: {e}. The worker stopped and needs a restart.",
            ))
            return

        self.state.set_activity(WorkerActivity.IDLE)
        logger.info("Worker started")

        while not stop_event.is_set():
            settings = load_worker_settings()

            if not self.state.is_enabled:
                self.state.set_activity(WorkerActivity.STOPPED, "Disabled by admin")
                if await self._wait(settings.disabled_poll_seconds, stop_event):
                    break
                continue

            try:
                summary = await self.run_cycle(stop_event, settings)
            except Exception as e:
                # Channel list or status writes failed; try again next cycle
                logger.exception("Scrape cycle failed")
                self.state.report_error(f"Cycle failed: {e}")
            else:
                if summary.cancelled:
                    break

            self.state.set_activity(
                WorkerActivity.WAITING_FOR_NEXT_CYCLE,
                f"Next cycle in {settings.scrape_interval_minutes:g} min",
            )
            if await self._wait(settings.scrape_interval_minutes * 60, stop_event):
                break
            self.state.set_activity(WorkerActivity.IDLE)

        self.state.set_activity(WorkerActivity.STOPPED, "Worker stopped")
        logger.info("Worker stopped")

    async def run_cycle(
        self,
        stop_event: asyncio.Event | None = None,
        settings: WorkerSettings | None = None,
    ) -> CycleSummary:
        """Scrape every active channel once.

        Args:
            stop_event: Checked before each channel and during pauses.
            settings: Settings for this cycle, loaded from the store if omitted.

        Returns:
            Per-channel results.
        """
        if stop_event is None:
            stop_event = asyncio.Event()
        settings = settings or load_worker_settings()

        summary = CycleSummary(started_at=utc_now())
        self.state.report_cycle_started(summary.started_at)
        channels = list_active_channels()
        logger.info(f"Starting cycle over {len(channels)} channels")

        previous: Channel | None = None
        for channel in channels:
            if stop_event.is_set():
                summary.cancelled = True
                break
            if previous is not None:
                delay_ms = previous.delay_after_scrape_ms
                if delay_ms is None:
                    delay_ms = settings.delay_between_channels_ms
                if await self._wait(delay_ms / 1000, stop_event):
                    summary.cancelled = True
                    break

            summary.channels.append(await self.scrape_channel(channel, settings, stop_event))
            previous = channel

        summary.finished_at = utc_now()
        self.state.report_cycle_completion(summary.started_at, summary.finished_at, summary.messages_found)
        logger.info(
            f"Cycle finished in {summary.duration}: {len(summary.channels)} channels, "
            f"{summary.messages_found} messages, {summary.failed_count} failed"
        )
        return summary

    async def scrape_channel(
        self,
        channel: Channel,
        settings: WorkerSettings,
        stop_event: asyncio.Event | None = None,
    ) -> ChannelResult:
        """Fetch, ingest and process one channel, retrying with linear backoff."""
        if stop_event is None:
            stop_event = asyncio.Event()

        now = utc_now()
        strategy, parameter = choose_fetch_strategy(channel, settings, now)
        result = ChannelResult(channel_id=channel.id, channel_name=channel.name, strategy=strategy)
        self.state.set_activity(WorkerActivity.SCRAPING, f"Scraping {channel.name}", channel.name)

        for attempt in range(1, settings.max_retries + 1):
            result.attempts = attempt
            try:
                messages = await self.source.fetch_messages(channel.external_id, strategy, parameter)
                loaded = get_channel(channel.id, include_rules=True) or channel
                self._store(loaded, messages, settings, strategy, now, result)
                result.success = True
                result.error = None
                break
            except Exception as e:
                result.error = ChannelFailure.from_exception(channel.name, e)
                logger.warning(f"Attempt {attempt}/{settings.max_retries} for channel {channel.name} failed: {e}")
                if attempt < settings.max_retries:
                    if await self._wait(attempt * settings.retry_delay_seconds, stop_event):
                        break

        if not result.success:
            logger.error(f"Giving up on channel {channel.name} after {result.attempts} attempts")
        return result

    def _store(
        self,
        channel: Channel,
        messages: list[FetchedMessage],
        settings: WorkerSettings,
        strategy: FetchStrategy,
        now: datetime,
        result: ChannelResult,
    ) -> None:
        stats = self.processing.ingest_messages(channel, messages, settings)
        result.fetched = stats.fetched
        result.new = stats.new
        result.changed = stats.changed

        processed = self.processing.process_pending(channel)
        result.processed = len(processed)

        self.engine.touch_seen(channel.id, stats.seen_external_ids, now)
        update_channel_watermark(channel.id, now, stats.last_message_id)

        if sweep_due(channel, settings, strategy, now):
            stale_before = now - timedelta(days=settings.stale_after_days)
            removed = self.engine.sweep_removed(channel.id, stats.seen_external_ids, stale_before)
            update_removal_check(channel.id, now)
            result.swept = True
            result.removed = len(removed)
            if len(removed) > settings.bulk_removal_threshold:
                notify(self.notifier, Notification(
                    type=NotificationType.BULK_REMOVAL,
                    priority=NotificationPriority.HIGH,
                    title=f"{len(removed)} accounts removed from {channel.name}",
                    message=(
                        f"The removal sweep soft-deleted {len(removed)} accounts "
                        f"(threshold {settings.bulk_removal_threshold})."
                    ),
                    related_entity_type="channel",
                    related_entity_id=channel.id,
                ))

    async def _wait(self, seconds: float, stop_event: asyncio.Event) -> bool:
        """Sleep up to ``seconds``; returns True if stopped meanwhile."""
        if stop_event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return stop_event.is_set()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True
