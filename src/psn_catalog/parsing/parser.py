"""Rule-based parser turning listing messages into structured accounts."""

import logging
import re

from ..config import config
from ..models.channel import RULE_FLAGS, ParsingRule
from ..models.enums import FieldType
from ..models.parsed import ParsedAccount
from .games import extract_games
from .text import (
    classify_capacity,
    parse_flag,
    parse_guarantee_minutes,
    parse_price,
    strip_decorations,
)

logger = logging.getLogger(__name__)

# Used only when a profile defines no sold-status rule
DEFAULT_SOLD_PATTERNS = [
    re.compile(pattern, RULE_FLAGS)
    for pattern in (
        r"\bsold\b",
        r"\bsold\s*out\b",
        r"فروخته\s*شد",
        r"فروش\s*رفت",
        r"\bпродан[оа]?\b",
    )
]

_BLOCK_FIELDS = (FieldType.GAMES_BLOCK_START, FieldType.GAMES_BLOCK_END)


def match_value(pattern: re.Pattern[str], text: str) -> str | None:
    """Return group 1 of the first match (whole match without groups), trimmed.

    Empty values count as no match.
    """
    match = pattern.search(text)
    if match is None:
        return None
    value = match.group(1) if pattern.groups and match.group(1) is not None else match.group(0)
    value = value.strip()
    return value or None


class MessageParser:
    """Extracts account fields from free-text listings using ordered rules.

    Each non-games field takes the value of the first rule that matches.
    A message that matches no rule still parses, with default fields.
    """

    def __init__(self, max_title_length: int | None = None):
        self.max_title_length = max_title_length or config.max_title_length

    def parse(
        self,
        raw_text: str | None,
        message_key: str,
        rules: list[ParsingRule],
    ) -> ParsedAccount | None:
        """Parse one message.

        Args:
            raw_text: Message text as received.
            message_key: External ID of the listing, copied to the result.
            rules: The channel's parsing rules.

        Returns:
            Parsed fields, or None for empty input or when parsing failed.
        """
        if not raw_text or not raw_text.strip():
            return None
        try:
            return self._parse(raw_text, message_key, rules)
        except Exception:
            logger.exception(f"Failed to parse message {message_key}")
            return None

    def _parse(self, raw_text: str, message_key: str, rules: list[ParsingRule]) -> ParsedAccount:
        cleaned = strip_decorations(raw_text)
        active = sorted((rule for rule in rules if rule.is_active), key=lambda rule: rule.priority)

        values: dict[FieldType, str] = {}
        sold_rules = []
        for rule in active:
            if rule.field_type in _BLOCK_FIELDS:
                continue
            if rule.field_type == FieldType.SOLD_STATUS:
                sold_rules.append(rule.regex)
                continue
            if rule.field_type in values:
                continue
            value = match_value(rule.regex, cleaned)
            if value is not None:
                values[rule.field_type] = value

        sold_patterns = sold_rules or DEFAULT_SOLD_PATTERNS
        is_sold = any(pattern.search(cleaned) for pattern in sold_patterns)

        capacity_info = values.get(FieldType.CAPACITY)
        games = extract_games(
            raw_text,
            [rule.regex for rule in active if rule.field_type == FieldType.GAMES_BLOCK_START],
            [rule.regex for rule in active if rule.field_type == FieldType.GAMES_BLOCK_END],
        )

        return ParsedAccount(
            external_id=message_key,
            title=self._title(cleaned, message_key),
            description=raw_text,
            price_ps4=parse_price(values.get(FieldType.PRICE_PS4)),
            price_ps5=parse_price(values.get(FieldType.PRICE_PS5)),
            region=values.get(FieldType.REGION),
            capacity=classify_capacity(capacity_info),
            capacity_info=capacity_info,
            has_original_mail=(
                FieldType.ORIGINAL_MAIL in values and parse_flag(values[FieldType.ORIGINAL_MAIL])
            ),
            guarantee_minutes=parse_guarantee_minutes(values.get(FieldType.GUARANTEE)),
            seller_info=values.get(FieldType.SELLER_INFO),
            additional_info=values.get(FieldType.ADDITIONAL_INFO),
            is_sold=is_sold,
            games=games,
        )

    def _title(self, cleaned: str, message_key: str) -> str:
        for line in cleaned.splitlines():
            line = line.strip(" \t-–|*#=~")
            if line:
                return line[:self.max_title_length]
        return f"Account {message_key}"
