"""Message sources module."""

from .base import AuthenticationError, MessageSource, SourceError

__all__ = [
    "AuthenticationError",
    "MessageSource",
    "SourceError",
]
