"""Sanitization of free-text fields before they are persisted."""

import re
from typing import Iterable

from insurance_core.config.settings import MAX_COMMENT_LENGTH, MAX_DESCRIPTION_LENGTH

MAX_NAME_LENGTH = 128
MAX_REASON_LENGTH = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(text: str | None, max_length: int) -> str | None:
    """Strip control characters and surrounding whitespace, truncate to max_length.

    None stays None; a string that is empty after cleaning becomes None.
    """
    if text is None:
        return None
    if not isinstance(text, str):
        text = str(text)
    cleaned = _CONTROL_CHARS.sub("", text).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned or None


def sanitize_description(text: str | None) -> str | None:
    return sanitize_text(text, MAX_DESCRIPTION_LENGTH)


def sanitize_comment(text: str | None) -> str | None:
    return sanitize_text(text, MAX_COMMENT_LENGTH)


def sanitize_reason(text: str | None) -> str | None:
    return sanitize_text(text, MAX_REASON_LENGTH)


def sanitize_list(items: Iterable[str] | None, max_length: int = MAX_NAME_LENGTH) -> list[str]:
    """Sanitize each entry, dropping the ones that end up empty."""
    if not items:
        return []
    out = []
    for item in items:
        cleaned = sanitize_text(item, max_length)
        if cleaned:
            out.append(cleaned)
    return out
