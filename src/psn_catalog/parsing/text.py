"""Text cleanup and value coercion used by the parser."""

import re
import unicodedata
from decimal import Decimal, InvalidOperation

from ..models.enums import AccountCapacity

# Joiners and variation selectors left behind by emoji sequences
_INVISIBLE_DECORATIONS = frozenset({"\u200d", "\ufe0e", "\ufe0f", "\u20e3"})

_NON_PRICE_CHARS = re.compile(r"[^\d.]")
_GUARANTEE = re.compile(
    r"(\d+)\s*(h\b|hr|hour|hours|ساعت|час|d\b|day|days|روز|дн|m\b|min|minute|minutes|دقیقه|мин)?",
    re.IGNORECASE,
)
_HOUR_UNITS = ("h", "hr", "hour", "hours", "ساعت", "час")
_DAY_UNITS = ("d", "day", "days", "روز", "дн")

_NEGATIVE_FLAG = re.compile(r"^(no|none|false|ندارد|خیر|нет|❌|✖)\b", re.IGNORECASE)

_CAPACITY_OFFLINE = re.compile(r"\bz\s*-?\s*1\b|offline|آفلاین|ظرفیت\s*(?:اول|1)|оффлайн", re.IGNORECASE)
_CAPACITY_HYBRID = re.compile(r"\bz\s*-?\s*2\b|hybrid|ظرفیت\s*(?:دوم|2)|гибрид", re.IGNORECASE)
_CAPACITY_ONLINE = re.compile(r"\bz\s*-?\s*3\b|\bfull\b|online|آنلاین|کامل|ظرفیت\s*(?:سوم|3)|онлайн|полн", re.IGNORECASE)


def is_decoration(char: str) -> bool:
    """True for emoji and other symbol glyphs that carry no field data."""
    if char in _INVISIBLE_DECORATIONS:
        return True
    category = unicodedata.category(char)
    if category in ("So", "Cs"):
        return True
    # Modifier symbols outside ASCII (skin tones and the like)
    return category == "Sk" and ord(char) > 0x7F


def strip_decorations(text: str) -> str:
    """Remove emoji and symbol characters, keeping letters of any script."""
    return "".join(char for char in text if not is_decoration(char))


def parse_price(value: str | None) -> Decimal | None:
    """Parse a price such as '1,250.50 $' or '1.200.000'.

    More than one dot means the dots are thousands separators.
    """
    if not value:
        return None
    digits = _NON_PRICE_CHARS.sub("", value)
    if digits.count(".") > 1:
        digits = digits.replace(".", "")
    digits = digits.strip(".")
    if not digits:
        return None
    try:
        return Decimal(digits)
    except InvalidOperation:
        return None


def parse_guarantee_minutes(value: str | None) -> int | None:
    """Parse a guarantee duration into minutes. Bare numbers are minutes."""
    if not value:
        return None
    match = _GUARANTEE.search(value)
    if match is None:
        return None
    amount = int(match.group(1))
    unit = (match.group(2) or "").lower()
    if unit in _HOUR_UNITS:
        return amount * 60
    if unit in _DAY_UNITS:
        return amount * 60 * 24
    return amount


def parse_flag(value: str | None) -> bool:
    """A matched flag rule is True unless its captured value is a negative word."""
    if value is None:
        return False
    return not _NEGATIVE_FLAG.match(value.strip())


def classify_capacity(text: str | None) -> AccountCapacity:
    """Map capacity wording to a tier. Never raises.

    Args:
        text: The capacity-info value extracted from the message.

    Returns:
        The tier, or AccountCapacity.UNKNOWN when no keyword matches.
    """
    if not text:
        return AccountCapacity.UNKNOWN
    if _CAPACITY_OFFLINE.search(text):
        return AccountCapacity.OFFLINE_ONLY
    if _CAPACITY_HYBRID.search(text):
        return AccountCapacity.HYBRID
    if _CAPACITY_ONLINE.search(text):
        return AccountCapacity.ONLINE_ONLY
    return AccountCapacity.UNKNOWN
