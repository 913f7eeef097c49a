"""Enumerations shared by models, storage and the worker."""

from enum import StrEnum


class RawMessageStatus(StrEnum):
    """Lifecycle of an ingested raw message."""

    PENDING = "pending"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"
    PENDING_CHANGE = "pending_change"
    DELETED = "deleted"

    def can_transition_to(self, target: "RawMessageStatus") -> bool:
        return target in _MESSAGE_TRANSITIONS[self]


_MESSAGE_TRANSITIONS: dict[RawMessageStatus, frozenset[RawMessageStatus]] = {
    RawMessageStatus.PENDING: frozenset({
        RawMessageStatus.PROCESSED,
        RawMessageStatus.IGNORED,
        RawMessageStatus.PENDING_CHANGE,
        RawMessageStatus.DELETED,
        RawMessageStatus.FAILED,
    }),
    RawMessageStatus.PROCESSED: frozenset({
        RawMessageStatus.PROCESSED,
        RawMessageStatus.PENDING_CHANGE,
        RawMessageStatus.DELETED,
    }),
    RawMessageStatus.IGNORED: frozenset({
        RawMessageStatus.PENDING,
        RawMessageStatus.PENDING_CHANGE,
        RawMessageStatus.DELETED,
    }),
    RawMessageStatus.FAILED: frozenset({
        RawMessageStatus.PENDING,
        RawMessageStatus.PROCESSED,
        RawMessageStatus.IGNORED,
        RawMessageStatus.PENDING_CHANGE,
        RawMessageStatus.DELETED,
    }),
    RawMessageStatus.PENDING_CHANGE: frozenset({
        RawMessageStatus.PENDING,
        RawMessageStatus.IGNORED,
        RawMessageStatus.PENDING_CHANGE,
        RawMessageStatus.DELETED,
    }),
    RawMessageStatus.DELETED: frozenset({
        RawMessageStatus.PENDING,
        RawMessageStatus.PENDING_CHANGE,
    }),
}


class StockStatus(StrEnum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    RESERVED = "reserved"


class AccountCapacity(StrEnum):
    """Access level of a sold account, lowest trust first."""

    UNKNOWN = "unknown"
    OFFLINE_ONLY = "offline_only"
    HYBRID = "hybrid"
    ONLINE_ONLY = "online_only"


class ChangeType(StrEnum):
    NO_CHANGE = "no_change"
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"
    PRICE_CHANGED = "price_changed"
    REGION_CHANGED = "region_changed"
    GAMES_CHANGED = "games_changed"
    STATUS_CHANGED = "status_changed"
    # Raw text comparison results
    CREATED = "created"
    CONTENT_MODIFIED = "content_modified"


class FetchStrategy(StrEnum):
    LAST_MESSAGES = "last_messages"
    SINCE_LAST_MESSAGE = "since_last_message"
    SINCE_HOURS_AGO = "since_hours_ago"


class FieldType(StrEnum):
    """Field a parsing rule extracts."""

    PRICE_PS4 = "price_ps4"
    PRICE_PS5 = "price_ps5"
    REGION = "region"
    SOLD_STATUS = "sold_status"
    CAPACITY = "capacity"
    GAMES_BLOCK_START = "games_block_start"
    GAMES_BLOCK_END = "games_block_end"
    ORIGINAL_MAIL = "original_mail"
    GUARANTEE = "guarantee"
    SELLER_INFO = "seller_info"
    ADDITIONAL_INFO = "additional_info"


class ChannelStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"
    ERROR = "error"


class WorkerActivity(StrEnum):
    INITIALIZING = "initializing"
    AUTHENTICATING = "authenticating"
    IDLE = "idle"
    SCRAPING = "scraping"
    WAITING_FOR_NEXT_CYCLE = "waiting_for_next_cycle"
    STOPPED = "stopped"
    ERROR = "error"


class NotificationType(StrEnum):
    ACCOUNT_CHANGED = "account_changed"
    BULK_REMOVAL = "bulk_removal"
    AUTH_FAILURE = "auth_failure"
    SCRAPE_FAILURE = "scrape_failure"


class NotificationPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"
