"""Ingestion of fetched messages and processing of pending ones."""

import logging
from dataclasses import dataclass, field
from typing import Any

from .config import WorkerSettings
from .db.messages import (
    archive_version,
    get_current_message,
    get_message,
    get_messages_by_status,
    insert_messages,
    update_message,
)
from .db.operations import RecordNotFoundError, get_game_by_title, transaction
from .db.channels import get_channel
from .detection import (
    InvalidTransitionError,
    detect_change_type,
    detect_changes,
    has_content_changed,
    transition_message,
)
from .fingerprint import fingerprint
from .models.base import utc_now
from .models.changes import ChangeSet
from .models.channel import Channel, ParsingRule
from .models.enums import NotificationType, RawMessageStatus
from .models.message import FetchedMessage, RawMessage, RawMessageCreate
from .models.notification import Notification
from .models.parsed import ParsedAccount
from .notifications import NotificationSink, notify
from .parsing import MessageParser
from .reconcile import ReconcileOutcome, ReconcileResult, ReconciliationEngine, SCRAPER

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    """Counts from storing one channel's fetched messages."""

    fetched: int = 0
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    seen_external_ids: set[str] = field(default_factory=set)
    last_message_id: int | None = None


@dataclass
class ProcessingResult:
    """Outcome of processing one raw message."""

    message_id: int
    success: bool
    outcome: ReconcileOutcome | None = None
    account_id: int | None = None
    error: str | None = None


@dataclass
class ParsePreview:
    """Parsed fields of a raw message, with which games are already known."""

    message: RawMessage
    parsed: ParsedAccount | None
    known_games: dict[str, bool] = field(default_factory=dict)


class ProcessingService:
    """Turns fetched messages into raw messages and raw messages into accounts."""

    def __init__(
        self,
        parser: MessageParser | None = None,
        engine: ReconciliationEngine | None = None,
        notifier: NotificationSink | None = None,
    ):
        self.parser = parser or MessageParser()
        self.engine = engine or ReconciliationEngine(self.parser)
        self.notifier = notifier

    def ingest_messages(
        self,
        channel: Channel,
        messages: list[FetchedMessage],
        settings: WorkerSettings,
    ) -> IngestStats:
        """Store new messages and record edits of known ones.

        Messages are handled in ascending ID order, one at a time, so each
        comparison sees every earlier message of the batch. New messages
        are inserted together at the end.

        Args:
            channel: Channel the messages came from, with rules loaded.
            messages: Fetched messages.
            settings: Worker settings for this cycle.

        Returns:
            Counts and the set of listing IDs seen.
        """
        stats = IngestStats(fetched=len(messages))
        batch: dict[int, RawMessageCreate] = {}

        for message in sorted(messages, key=lambda m: m.external_id):
            stats.seen_external_ids.add(str(message.external_id))
            stats.last_message_id = max(stats.last_message_id or 0, message.external_id)
            content_hash = fingerprint(message.text)

            if message.external_id in batch:
                batch[message.external_id] = self._new_row(channel, message, content_hash)
                continue

            stored = get_current_message(channel.id, message.external_id)
            if not has_content_changed(channel.id, message.external_id, content_hash):
                stats.unchanged += 1
                continue

            if stored is None:
                batch[message.external_id] = self._new_row(channel, message, content_hash)
                stats.new += 1
                continue

            self._record_change(channel, stored, message, content_hash, settings)
            stats.changed += 1

        if batch:
            insert_messages(list(batch.values()))
        logger.info(
            f"Channel {channel.name}: {stats.fetched} fetched, {stats.new} new, "
            f"{stats.changed} changed, {stats.unchanged} unchanged"
        )
        return stats

    @staticmethod
    def _new_row(channel: Channel, message: FetchedMessage, content_hash: str) -> RawMessageCreate:
        return RawMessageCreate(
            channel_id=channel.id,
            external_message_id=message.external_id,
            text=message.text,
            received_at=message.received_at,
            content_hash=content_hash,
        )

    def compare_versions(self, old_text: str, new_text: str, message_key: str, rules: list[ParsingRule]) -> ChangeSet:
        """Diff two texts of the same listing, falling back to the text heuristic."""
        old = self.parser.parse(old_text, message_key, rules)
        new = self.parser.parse(new_text, message_key, rules)
        if old is not None and new is not None:
            return detect_changes(old, new)
        return ChangeSet(change_type=detect_change_type(old_text, new_text))

    def _record_change(
        self,
        channel: Channel,
        stored: RawMessage,
        message: FetchedMessage,
        content_hash: str,
        settings: WorkerSettings,
    ) -> None:
        key = str(message.external_id)
        change_set = self.compare_versions(stored.text, message.text, key, channel.rules or [])
        status = RawMessageStatus.PENDING if settings.auto_process_changes else RawMessageStatus.PENDING_CHANGE

        with transaction():
            archived_id = archive_version(stored)
            update_message(
                stored.id,
                {
                    "text": message.text,
                    "received_at": message.received_at,
                    "content_hash": content_hash,
                    "status": status,
                    "change_details": change_set.to_json(),
                    "previous_message_id": archived_id,
                },
                SCRAPER,
            )

        if settings.notify_on_changes and change_set.has_changes:
            notify(self.notifier, Notification(
                type=NotificationType.ACCOUNT_CHANGED,
                priority=change_set.notification_priority(),
                title=f"Listing {key} changed in {channel.name}",
                message=change_set.summary(),
                related_entity_type="raw_message",
                related_entity_id=stored.id,
            ))

    def process_pending(self, channel: Channel) -> list[ProcessingResult]:
        """Parse and reconcile every pending message of a channel, oldest first.

        Args:
            channel: The channel, with rules loaded.

        Returns:
            One result per message.
        """
        rules = channel.rules or []
        results = []
        for message in get_messages_by_status(RawMessageStatus.PENDING, channel_id=channel.id):
            results.append(self.process_message(message, rules))
        return results

    def process_message(self, message: RawMessage, rules: list[ParsingRule]) -> ProcessingResult:
        """Parse one pending message and merge it into the catalog.

        A message without structured data is ignored. The catalog update
        and the message status change commit together.

        Raises:
            Exception: Storage errors propagate after the message has been
                marked FAILED.
        """
        key = str(message.external_message_id)
        try:
            parsed = self.parser.parse(message.text, key, rules)
            with transaction():
                if parsed is None:
                    transition_message(message, RawMessageStatus.IGNORED, SCRAPER, processing_result="No structured data")
                    return ProcessingResult(message.id, success=True)

                result = self.engine.reconcile(message.channel_id, parsed, raw_message_id=message.id)
                transition_message(
                    message,
                    RawMessageStatus.PROCESSED,
                    SCRAPER,
                    account_id=result.account_id,
                    processed_at=utc_now(),
                    processing_result=result.outcome.value,
                )
            return ProcessingResult(message.id, True, result.outcome, result.account_id)
        except Exception as e:
            logger.error(f"Processing message {message.id} ({key}) failed: {e}")
            update_message(
                message.id,
                {"status": RawMessageStatus.FAILED, "processing_result": f"{type(e).__name__}: {e}"},
                SCRAPER,
            )
            raise

    def process_raw_message(
        self,
        message_id: int,
        edits: dict[str, Any] | None = None,
        actor: str = "admin",
    ) -> ProcessingResult:
        """Admin "process & save" of one message. Errors are reported, not raised."""
        try:
            result: ReconcileResult = self.engine.process_and_save(message_id, edits, actor)
        except (RecordNotFoundError, InvalidTransitionError, ValueError) as e:
            return ProcessingResult(message_id, success=False, error=str(e))
        return ProcessingResult(message_id, True, result.outcome, result.account_id)

    def preview(self, message_id: int) -> ParsePreview:
        """Parse a stored message without saving anything."""
        message = get_message(message_id)
        if message is None:
            raise RecordNotFoundError(f"Raw message {message_id} not found")
        channel = get_channel(message.channel_id, include_rules=True)
        rules = channel.rules if channel is not None and channel.rules is not None else []
        parsed = self.parser.parse(message.text, str(message.external_message_id), rules)
        known = {}
        if parsed is not None:
            known = {title: get_game_by_title(title) is not None for title in parsed.games}
        return ParsePreview(message=message, parsed=parsed, known_games=known)
