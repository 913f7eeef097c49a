"""Base message source class."""

from abc import ABC, abstractmethod

from ..models.enums import FetchStrategy
from ..models.message import FetchedMessage


class SourceError(Exception):
    """Raised when the upstream source cannot deliver messages."""


class AuthenticationError(SourceError):
    """Raised when the source rejects the configured credentials."""


class MessageSource(ABC):
    """Base class for upstream message sources."""

    @abstractmethod
    async def authenticate(self) -> None:
        """Connect and log in.

        Raises:
            AuthenticationError: Credentials are missing or rejected, or the
                source cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_messages(
        self,
        channel_external_id: str,
        strategy: FetchStrategy,
        parameter: int,
    ) -> list[FetchedMessage]:
        """Fetch messages of one channel.

        Args:
            channel_external_id: Upstream channel handle.
            strategy: How to select messages.
            parameter: Message count for LAST_MESSAGES, last known message
                ID for SINCE_LAST_MESSAGE, hours for SINCE_HOURS_AGO.

        Returns:
            Messages with text, ordered by ascending ID.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections. Optional for sources without any."""

    async def __aenter__(self):
        await self.authenticate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
