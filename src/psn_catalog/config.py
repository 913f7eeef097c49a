"""Configuration management."""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# Settings-store keys for worker settings are "<prefix><field name>"
WORKER_SETTINGS_PREFIX = "worker."


class TelegramConfig(BaseModel):
    """Telegram API credentials and session location."""

    api_id: int = Field(default=0, description="TELEGRAM_API_ID")
    api_hash: str = Field(default="", description="TELEGRAM_API_HASH")
    phone: str | None = Field(default=None, description="Phone number used for the first login")
    password: str | None = Field(default=None, description="Two-step verification password")
    session_name: str = Field(default="psn_catalog", description="Telethon session file name")
    session_string: str | None = Field(default=None, description="StringSession, takes precedence over the session file")

    @classmethod
    def from_env(cls) -> "TelegramConfig":
        """Build from TELEGRAM_* environment variables.

        A malformed TELEGRAM_API_ID is logged and treated as unset.
        """
        raw_api_id = (os.environ.get("TELEGRAM_API_ID") or "").strip()
        try:
            api_id = int(raw_api_id or 0)
        except ValueError:
            logger.warning(f"Invalid TELEGRAM_API_ID {raw_api_id!r}, Telegram source is not configured")
            api_id = 0
        return cls(
            api_id=api_id,
            api_hash=(os.environ.get("TELEGRAM_API_HASH") or "").strip(),
            phone=os.environ.get("TELEGRAM_PHONE") or None,
            password=os.environ.get("TELEGRAM_PASSWORD") or None,
            session_name=os.environ.get("TELEGRAM_SESSION") or "psn_catalog",
            session_string=(os.environ.get("TELEGRAM_SESSION_STRING") or "").strip() or None,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_id and self.api_hash)


class WorkerSettings(BaseModel):
    """Tunable worker thresholds.

    Values live in the settings store as strings and are parsed once per
    cycle by ``load``. A value that is missing, malformed or out of range
    falls back to the default below.
    """

    # Scheduling
    scrape_interval_minutes: float = Field(default=15, ge=0)
    delay_between_channels_ms: int = Field(default=2000, ge=0)
    disabled_poll_seconds: float = Field(default=5, ge=0)

    # Per-channel retry
    max_retries: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=5, ge=0)

    # Fetch strategy
    initial_fetch_count: int = Field(default=50, ge=1)
    fetch_window_hours: int = Field(default=24, ge=1)
    incremental_window_hours: float = Field(default=1, ge=0)

    # Removal sweep
    removal_sweep_enabled: bool = False
    removal_check_interval_hours: float = Field(default=6, ge=0)
    stale_after_days: int = Field(default=7, ge=1)
    bulk_removal_threshold: int = Field(default=5, ge=0)

    # Change handling
    auto_process_changes: bool = False
    notify_on_changes: bool = True

    @classmethod
    def setting_key(cls, field_name: str) -> str:
        return f"{WORKER_SETTINGS_PREFIX}{field_name}"

    @classmethod
    def load(cls, raw: Mapping[str, str]) -> "WorkerSettings":
        """Parse settings-store values, falling back to defaults per field.

        Args:
            raw: All settings as stored (key -> string value).

        Returns:
            Validated settings.
        """
        values = {}
        for name in cls.model_fields:
            key = cls.setting_key(name)
            if key in raw and raw[key] is not None and str(raw[key]).strip() != "":
                values[name] = str(raw[key]).strip()

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            for error in e.errors():
                if not error["loc"]:
                    continue
                name = error["loc"][0]
                logger.warning(
                    f"Invalid value for setting {cls.setting_key(str(name))!r}: "
                    f"{values.get(name)!r} ({error['msg']}), using default"
                )
                values.pop(name, None)
            return cls.model_validate(values)


class Config(BaseModel):
    """Application configuration."""

    # Project paths - config.py is at src/psn_catalog/config.py, so 3 parents up
    project_root: Path = Path(__file__).parent.parent.parent
    data_dir: Path = project_root / "data"
    db_path: Path = data_dir / "psn_catalog.db"

    # Upstream source
    telegram: TelegramConfig = Field(default_factory=TelegramConfig.from_env)
    max_messages_per_fetch: int = 1000

    # Parser
    max_title_length: int = 120

    def ensure_dirs(self) -> None:
        """Ensure required directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
