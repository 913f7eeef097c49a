"""Extraction of the game list block from a listing message."""

import re

from .text import is_decoration

MIN_TITLE_LENGTH = 3
MAX_TITLE_LENGTH = 100

_LINE_BREAK = re.compile(r"\r\n|\r|\n|\u2028|\u2029")
_BULLET_CHARS = "-*•·●○◦▪▫■□►▶▸➤➜➔→⁃–—=~>#|.:)"
_NUMBERING = re.compile(r"^\(?\d{1,3}\s*[.)\-:]\s*")

_PLATFORM = r"(?:ps\s?[45]|p[45])"
_PLATFORM_PAIR = rf"{_PLATFORM}(?:\s*(?:&|and|/|\+|,|-)\s*{_PLATFORM})?"
_PLATFORM_SUFFIX = re.compile(rf"[\s\-–|/,]*[(\[]?\b{_PLATFORM_PAIR}[)\]]?\s*$", re.IGNORECASE)
_PLATFORM_TOKEN = re.compile(rf"[(\[]?{_PLATFORM_PAIR}[)\]]?", re.IGNORECASE)

_NUMERIC_LINE = re.compile(r"[\d\s.,:/\-]+")
_PAGE_LINE = re.compile(r"(?:page|pg|صفحه|стр(?:аница)?\.?)\s*\d+", re.IGNORECASE)


def find_block(text: str, start_patterns: list[re.Pattern[str]], end_patterns: list[re.Pattern[str]]) -> str | None:
    """Cut the games block out of ``text``.

    The end boundary is applied first, then the start boundary is searched
    only within what is left, so an end marker placed before a start-like
    token further down cannot produce a false block.

    Returns:
        Text after the start marker, or None when no start marker matches.
    """
    for pattern in end_patterns:
        match = pattern.search(text)
        if match is not None:
            text = text[:match.start()]
            break

    for pattern in start_patterns:
        match = pattern.search(text)
        if match is not None:
            return text[match.end():]
    return None


def clean_line(line: str) -> str:
    """Strip bullets, numbering and trailing platform tokens from one line."""
    cleaned = line.strip()
    # Alternate until neither decoration nor numbering is left at the front
    while cleaned:
        stripped = cleaned.lstrip(_BULLET_CHARS + " \t")
        stripped = _drop_leading_decorations(stripped)
        stripped = _NUMBERING.sub("", stripped)
        if stripped == cleaned:
            break
        cleaned = stripped
    cleaned = _PLATFORM_SUFFIX.sub("", cleaned)
    return cleaned.strip(" \t-–|,")


def _drop_leading_decorations(text: str) -> str:
    index = 0
    while index < len(text) and (is_decoration(text[index]) or text[index].isspace()):
        index += 1
    return text[index:]


def is_title(line: str) -> bool:
    """Whether a cleaned line can be a game title."""
    if not MIN_TITLE_LENGTH <= len(line) <= MAX_TITLE_LENGTH:
        return False
    if _NUMERIC_LINE.fullmatch(line) or _PAGE_LINE.fullmatch(line):
        return False
    return not _PLATFORM_TOKEN.fullmatch(line)


def split_titles(block: str) -> list[str]:
    """Turn a games block into unique titles, first occurrence wins."""
    titles: list[str] = []
    seen: set[str] = set()
    for line in _LINE_BREAK.split(block):
        title = clean_line(line)
        if not is_title(title):
            continue
        key = title.casefold()
        if key in seen:
            continue
        seen.add(key)
        titles.append(title)
    return titles


def extract_games(
    text: str,
    start_patterns: list[re.Pattern[str]],
    end_patterns: list[re.Pattern[str]],
) -> list[str]:
    """Extract game titles between the configured start and end markers.

    Args:
        text: Original message text, decorations included.
        start_patterns: Compiled games-block start rules, in rule order.
        end_patterns: Compiled games-block end rules, in rule order.

    Returns:
        Titles in message order. Empty when no start marker is configured
        or found.
    """
    if not text or not start_patterns:
        return []
    block = find_block(text, start_patterns, end_patterns)
    if block is None:
        return []
    return split_titles(block)
