from __future__ import annotations

import re
from typing import Optional, Tuple

from app.core.errors import ValidationError

_USERNAME_BAD_CHARS = re.compile(r"[^a-z0-9_.]")


def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or len(s) > 254:
        raise ValidationError("Invalid email")
    return s


def normalize_username(s: str) -> str:
    s = _USERNAME_BAD_CHARS.sub("", (s or "").strip().lower())
    if not s:
        raise ValidationError("Invalid username")
    return s[:30]


def clean_str(value: Optional[str], *, max_len: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if max_len is not None and len(trimmed) > max_len:
        raise ValidationError(f"Value too long (max {max_len})")
    return trimmed


def clean_body(content: Optional[str], image: Optional[str], *, what: str, max_len: int) -> Tuple[str, Optional[str]]:
    """Text/image pair for posts, comments and replies; at least one is required."""
    text = (content or "").strip()
    img = (image or "").strip() or None
    if not text and not img:
        raise ValidationError(f"{what} must contain text or image")
    if len(text) > max_len:
        raise ValidationError(f"{what} must be at most {max_len} characters")
    return text, img


def search_shadow(value: Optional[str]) -> str:
    return (value or "").strip().lower()
