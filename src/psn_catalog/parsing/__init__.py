"""Message parsing module."""

from .parser import MessageParser, DEFAULT_SOLD_PATTERNS
from .games import extract_games
from .text import classify_capacity, strip_decorations

__all__ = [
    "MessageParser",
    "DEFAULT_SOLD_PATTERNS",
    "extract_games",
    "classify_capacity",
    "strip_decorations",
]
