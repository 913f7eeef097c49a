"""Content fingerprints used to detect edited listings."""

import base64
import hashlib
import re
import unicodedata

# Fingerprint of empty text. Distinct from None, which means "never fingerprinted".
EMPTY_FINGERPRINT = ""

_REPEATED_SPACES = re.compile(r" {2,}")


def normalize_text(text: str | None) -> str:
    """Normalize text so cosmetic edits do not change the fingerprint.

    Lowercases, unifies line endings to ``\\n``, turns tabs into spaces,
    applies NFC, trims and collapses runs of spaces.
    """
    if not text:
        return ""
    normalized = text.lower()
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = normalized.replace("\t", " ")
    normalized = unicodedata.normalize("NFC", normalized)
    normalized = normalized.strip()
    return _REPEATED_SPACES.sub(" ", normalized)


def fingerprint(text: str | None) -> str:
    """Compute the base64 SHA-256 of the normalized text.

    Args:
        text: Raw message text, possibly empty.

    Returns:
        Base64 digest, or EMPTY_FINGERPRINT when nothing is left after normalizing.
    """
    normalized = normalize_text(text)
    if not normalized:
        return EMPTY_FINGERPRINT
    digest = hashlib.sha256(normalized.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")
