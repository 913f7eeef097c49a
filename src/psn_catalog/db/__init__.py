"""Database module."""

from .schema import init_db
from .operations import (
    RecordNotFoundError,
    get_db,
    close_db,
    transaction,
    get_account,
    get_account_by_external_id,
    get_all_accounts,
    get_account_history,
)
from .messages import (
    get_message,
    get_current_message,
    get_messages_by_status,
    count_messages_by_status,
)
from .channels import (
    create_channel,
    create_parsing_profile,
    add_parsing_rule,
    get_channel,
    list_active_channels,
)
from .settings import (
    get_setting,
    get_typed_setting,
    set_setting,
    load_worker_settings,
)

__all__ = [
    "init_db",
    "RecordNotFoundError",
    "get_db",
    "close_db",
    "transaction",
    "get_account",
    "get_account_by_external_id",
    "get_all_accounts",
    "get_account_history",
    "get_message",
    "get_current_message",
    "get_messages_by_status",
    "count_messages_by_status",
    "create_channel",
    "create_parsing_profile",
    "add_parsing_rule",
    "get_channel",
    "list_active_channels",
    "get_setting",
    "get_typed_setting",
    "set_setting",
    "load_worker_settings",
]
