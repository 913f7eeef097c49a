"""Merging parsed listings into the account catalog."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from .db.channels import get_channel
from .db.messages import get_message
from .db.operations import (
    RecordNotFoundError,
    add_history,
    get_account_by_external_id,
    get_active_accounts,
    get_or_create_games,
    get_stale_accounts,
    insert_account,
    sync_account_games,
    touch_accounts,
    transaction,
    update_account,
)
from .detection import transition_message
from .history import diff_accounts, record
from .models.account import Account, AccountCreate
from .models.base import utc_now
from .models.enums import AccountCapacity, RawMessageStatus, StockStatus
from .models.parsed import ParsedAccount
from .parsing import MessageParser

logger = logging.getLogger(__name__)

SCRAPER = "scraper"
REMOVED_REASON = "Account no longer available in channel"


class ReconcileOutcome(StrEnum):
    SKIPPED = "skipped"
    CREATED = "created"
    UPDATED = "updated"
    MARKED_SOLD = "marked_sold"
    RELISTED = "relisted"
    SOLD_BEFORE_SEEN = "sold_before_seen"


@dataclass
class ReconcileResult:
    """What reconciling one parsed listing did to the catalog."""

    outcome: ReconcileOutcome
    account_id: int | None = None
    history_records: int = 0

    @property
    def changed_catalog(self) -> bool:
        return self.outcome not in (ReconcileOutcome.SKIPPED, ReconcileOutcome.SOLD_BEFORE_SEEN)


def _account_data(channel_id: int, parsed: ParsedAccount, raw_message_id: int | None) -> AccountCreate:
    return AccountCreate(
        channel_id=channel_id,
        external_id=parsed.external_id,
        title=parsed.title,
        description=parsed.description,
        price_ps4=parsed.price_ps4,
        price_ps5=parsed.price_ps5,
        region=parsed.region,
        capacity=parsed.capacity,
        has_original_mail=parsed.has_original_mail,
        guarantee_minutes=parsed.guarantee_minutes,
        seller_info=parsed.seller_info,
        additional_info=parsed.additional_info,
        stock_status=StockStatus.OUT_OF_STOCK if parsed.is_sold else StockStatus.IN_STOCK,
        raw_message_id=raw_message_id,
    )


class ReconciliationEngine:
    """Creates, updates and soft-deletes catalog accounts.

    ``reconcile`` is the scraper path: it overwrites the basic fields and
    only diffs the sold status. ``process_and_save`` is the admin path: it
    diffs every tracked field and syncs games. Both commit atomically.
    """

    def __init__(self, parser: MessageParser | None = None):
        self.parser = parser or MessageParser()

    def reconcile(
        self,
        channel_id: int,
        parsed: ParsedAccount | None,
        raw_message_id: int | None = None,
        seen_at: datetime | None = None,
    ) -> ReconcileResult:
        """Merge one scraped listing into the catalog.

        Args:
            channel_id: Source channel ID.
            parsed: Parser output; None or a missing external ID is a no-op.
            raw_message_id: Message the listing came from.
            seen_at: Scrape time, defaults to now.

        Returns:
            The outcome and the affected account.
        """
        if parsed is None or not parsed.external_id:
            logger.info(f"Nothing to reconcile for channel {channel_id}")
            return ReconcileResult(ReconcileOutcome.SKIPPED)

        seen_at = seen_at or utc_now()
        with transaction():
            existing = get_account_by_external_id(channel_id, parsed.external_id)
            if existing is not None:
                return self._update_existing(existing, parsed, raw_message_id, seen_at)

            if parsed.is_sold:
                logger.debug(f"Listing {parsed.external_id} in channel {channel_id} already sold, not creating")
                return ReconcileResult(ReconcileOutcome.SOLD_BEFORE_SEEN)

            data = _account_data(channel_id, parsed, raw_message_id)
            if data.capacity == AccountCapacity.UNKNOWN:
                data.capacity = AccountCapacity.OFFLINE_ONLY
            account_id = insert_account(data, last_scraped_at=seen_at)
            games = get_or_create_games(parsed.games)
            sync_account_games(account_id, [game.id for game in games])
            logger.info(f"New account {account_id} from listing {parsed.external_id}: {parsed.title}")
            return ReconcileResult(ReconcileOutcome.CREATED, account_id)

    def _update_existing(
        self,
        existing: Account,
        parsed: ParsedAccount,
        raw_message_id: int | None,
        seen_at: datetime,
    ) -> ReconcileResult:
        fields: dict[str, Any] = {
            "title": parsed.title,
            "price_ps4": parsed.price_ps4,
            "price_ps5": parsed.price_ps5,
            "region": parsed.region,
            "last_scraped_at": seen_at,
        }
        if raw_message_id is not None:
            fields["raw_message_id"] = raw_message_id

        outcome = ReconcileOutcome.UPDATED
        records = []
        if parsed.is_sold:
            fields["is_deleted"] = True
            fields["stock_status"] = StockStatus.OUT_OF_STOCK
            if not existing.is_deleted:
                outcome = ReconcileOutcome.MARKED_SOLD
                logger.info(f"Account {existing.id} ({existing.title}) marked as sold")
        else:
            fields["is_deleted"] = False
            fields["stock_status"] = StockStatus.IN_STOCK
            if existing.is_deleted:
                outcome = ReconcileOutcome.RELISTED
                logger.info(f"Account {existing.id} ({existing.title}) relisted")

        if outcome != ReconcileOutcome.UPDATED:
            records = [
                record(existing.id, "is_deleted", existing.is_deleted, fields["is_deleted"], SCRAPER, seen_at),
                record(existing.id, "stock_status", existing.stock_status, fields["stock_status"], SCRAPER, seen_at),
            ]

        update_account(existing.id, fields)
        written = add_history(records)
        return ReconcileResult(outcome, existing.id, written)

    def process_and_save(
        self,
        raw_message_id: int,
        edits: dict[str, Any] | None = None,
        actor: str = "admin",
    ) -> ReconcileResult:
        """Save a raw message to the catalog with operator edits applied.

        The full message text is parsed again so fields the operator did
        not touch are still filled. Every changed field gets a history
        record, and the game set is synced by difference.

        Args:
            raw_message_id: Message to save.
            edits: ParsedAccount field name -> value, overriding parsed values.
                None values are ignored.
            actor: Admin identity recorded in history.

        Returns:
            The outcome and the affected account.

        Raises:
            RecordNotFoundError: The message or its channel does not exist.
            ValueError: An edit names an unknown field.
        """
        message = get_message(raw_message_id)
        if message is None:
            raise RecordNotFoundError(f"Raw message {raw_message_id} not found")
        channel = get_channel(message.channel_id, include_rules=True)
        if channel is None:
            raise RecordNotFoundError(f"Channel {message.channel_id} not found")

        external_id = str(message.external_message_id)
        parsed = self.parser.parse(message.text, external_id, channel.rules or [])
        if parsed is None:
            parsed = ParsedAccount(external_id=external_id, title=f"Account {external_id}", description=message.text)
        merged = self._merge_edits(parsed, edits or {})

        now = utc_now()
        with transaction():
            if message.status in (RawMessageStatus.PENDING_CHANGE, RawMessageStatus.IGNORED, RawMessageStatus.DELETED):
                transition_message(message, RawMessageStatus.PENDING, actor)
                message = get_message(raw_message_id)

            existing = get_account_by_external_id(channel.id, external_id, include_games=True)
            if existing is None and merged.is_sold:
                if message.status == RawMessageStatus.PROCESSED:
                    return ReconcileResult(ReconcileOutcome.SOLD_BEFORE_SEEN)
                transition_message(
                    message,
                    RawMessageStatus.IGNORED,
                    actor,
                    processing_result="Listing sold before it was cataloged",
                )
                return ReconcileResult(ReconcileOutcome.SOLD_BEFORE_SEEN)

            games = get_or_create_games(merged.games)
            data = _account_data(channel.id, merged, message.id)
            if existing is None:
                account_id = insert_account(data, last_scraped_at=now)
                sync_account_games(account_id, [game.id for game in games])
                result = ReconcileResult(ReconcileOutcome.CREATED, account_id)
            else:
                records = diff_accounts(existing, data, actor, existing.games or [], games, now)
                fields = data.model_dump(exclude={"channel_id", "external_id"})
                fields["is_deleted"] = merged.is_sold
                if existing.is_deleted != merged.is_sold:
                    records.append(record(existing.id, "is_deleted", existing.is_deleted, merged.is_sold, actor, now))
                update_account(existing.id, fields)
                sync_account_games(existing.id, [game.id for game in games])
                written = add_history(records)
                result = ReconcileResult(ReconcileOutcome.UPDATED, existing.id, written)

            transition_message(
                message,
                RawMessageStatus.PROCESSED,
                actor,
                account_id=result.account_id,
                processed_at=now,
                processing_result=f"Saved by {actor}: {result.outcome.value}",
            )
        logger.info(f"Message {raw_message_id} saved as account {result.account_id} ({result.outcome.value})")
        return result

    @staticmethod
    def _merge_edits(parsed: ParsedAccount, edits: dict[str, Any]) -> ParsedAccount:
        unknown = set(edits) - set(ParsedAccount.model_fields)
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)}")
        overrides = {name: value for name, value in edits.items() if value is not None}
        return ParsedAccount.model_validate({**parsed.model_dump(), **overrides})

    def sweep_removed(
        self,
        channel_id: int,
        seen_external_ids: Iterable[str],
        stale_before: datetime,
        actor: str = SCRAPER,
    ) -> list[int]:
        """Soft-delete listings that disappeared from a channel.

        An active account is removed when it was not seen for longer than
        ``stale_before``, or when its ID falls inside the range covered by
        this scrape but was missing from it. IDs older than the oldest
        fetched message carry no signal and are kept.

        Args:
            channel_id: Source channel ID.
            seen_external_ids: Listing IDs returned by a full or windowed fetch.
            stale_before: Accounts last seen before this are removed.
            actor: Recorded in history.

        Returns:
            IDs of the removed accounts.
        """
        seen = set(seen_external_ids)
        numeric_seen = [int(external_id) for external_id in seen if external_id.isdigit()]
        window_floor = min(numeric_seen) if numeric_seen else None
        now = utc_now()

        removed = []
        with transaction():
            stale_ids = {account.id for account in get_stale_accounts(channel_id, stale_before)}
            for account in get_active_accounts(channel_id):
                missing = (
                    window_floor is not None
                    and account.external_id not in seen
                    and account.external_id.isdigit()
                    and int(account.external_id) >= window_floor
                )
                if not missing and account.id not in stale_ids:
                    continue
                self._remove(account, now, actor)
                removed.append(account.id)

        if removed:
            logger.info(f"Removed {len(removed)} accounts no longer listed in channel {channel_id}")
        return removed

    def _remove(self, account: Account, now: datetime, actor: str) -> None:
        note = f"Auto-removed: Not found in channel scrape at {now:%Y-%m-%d %H:%M} UTC"
        notes = f"{account.notes}\n{note}" if account.notes else note
        update_account(account.id, {
            "is_deleted": True,
            "stock_status": StockStatus.OUT_OF_STOCK,
            "notes": notes,
        })
        add_history([
            record(account.id, "is_deleted", False, True, actor, now),
            record(account.id, "stock_status", account.stock_status, StockStatus.OUT_OF_STOCK, actor, now),
        ])
        if account.raw_message_id is None:
            return
        message = get_message(account.raw_message_id)
        if message is not None and message.status.can_transition_to(RawMessageStatus.DELETED):
            transition_message(message, RawMessageStatus.DELETED, actor, processing_result=REMOVED_REASON)

    def touch_seen(self, channel_id: int, external_ids: Iterable[str], seen_at: datetime) -> int:
        """Refresh last-seen time of listings present in a scrape."""
        return touch_accounts(channel_id, external_ids, seen_at)
