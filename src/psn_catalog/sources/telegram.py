"""Telegram message source built on Telethon."""

import logging
from datetime import datetime, timedelta, UTC

from telethon import TelegramClient
from telethon.errors import FloodWaitError, RPCError
from telethon.sessions import StringSession

from ..config import TelegramConfig, config
from ..models.base import ensure_utc
from ..models.enums import FetchStrategy
from ..models.message import FetchedMessage
from .base import AuthenticationError, MessageSource, SourceError

logger = logging.getLogger(__name__)


class TelegramSource(MessageSource):
    """Reads channel history with a user session.

    The session must already be authorized. Run ``login()`` once from an
    interactive terminal to create it.
    """

    def __init__(
        self,
        telegram_config: TelegramConfig | None = None,
        client: TelegramClient | None = None,
        max_messages: int | None = None,
    ):
        self.telegram_config = telegram_config or config.telegram
        self.max_messages = max_messages or config.max_messages_per_fetch
        self._client = client

    def _build_client(self) -> TelegramClient:
        cfg = self.telegram_config
        if cfg.session_string:
            return TelegramClient(StringSession(cfg.session_string), cfg.api_id, cfg.api_hash)
        config.ensure_dirs()
        return TelegramClient(str(config.data_dir / cfg.session_name), cfg.api_id, cfg.api_hash)

    @property
    def client(self) -> TelegramClient:
        """Get the connected client, raising if not authenticated."""
        if self._client is None:
            raise RuntimeError("Source not authenticated. Call authenticate() first.")
        return self._client

    async def authenticate(self) -> None:
        if self._client is None and not self.telegram_config.is_configured:
            raise AuthenticationError("TELEGRAM_API_ID and TELEGRAM_API_HASH must be set")

        client = self._client or self._build_client()
        try:
            await client.connect()
            authorized = await client.is_user_authorized()
        except (OSError, RPCError) as e:
            raise AuthenticationError(f"Could not connect to Telegram: {e}") from e
        if not authorized:
            raise AuthenticationError("Telegram session is not authorized, run the login first")

        self._client = client
        me = await client.get_me()
        logger.info(f"Authenticated with Telegram as {getattr(me, 'username', None) or getattr(me, 'id', '?')}")

    async def login(self) -> None:
        """Interactive first login; prompts for the code on stdin."""
        client = self._client or self._build_client()
        await client.start(
            phone=self.telegram_config.phone or (lambda: input("Phone number: ")),
            password=self.telegram_config.password or (lambda: input("Two-step password: ")),
        )
        self._client = client

    async def fetch_messages(
        self,
        channel_external_id: str,
        strategy: FetchStrategy,
        parameter: int,
    ) -> list[FetchedMessage]:
        client = self.client
        since: datetime | None = None
        if strategy == FetchStrategy.LAST_MESSAGES:
            kwargs = {"limit": min(parameter, self.max_messages)}
        elif strategy == FetchStrategy.SINCE_LAST_MESSAGE:
            kwargs = {"min_id": parameter, "limit": self.max_messages}
        else:
            since = datetime.now(UTC) - timedelta(hours=parameter)
            kwargs = {"limit": self.max_messages}

        messages = []
        try:
            entity = await client.get_entity(channel_external_id)
            # Newest first, so a time window can stop at the first older message
            async for msg in client.iter_messages(entity, **kwargs):
                received_at = ensure_utc(msg.date) if msg.date else datetime.now(UTC)
                if since is not None and received_at < since:
                    break
                text = msg.message
                if not text or not text.strip():
                    continue
                messages.append(FetchedMessage(external_id=msg.id, text=text, received_at=received_at))
        except FloodWaitError as e:
            raise SourceError(f"Flood wait of {e.seconds}s while reading {channel_external_id}") from e
        except (ValueError, RPCError) as e:
            raise SourceError(f"Could not read {channel_external_id}: {e}") from e

        logger.debug(f"Fetched {len(messages)} messages from {channel_external_id} ({strategy.value}, {parameter})")
        return sorted(messages, key=lambda m: m.external_id)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.disconnect()
