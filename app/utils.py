"""Utility helpers for the StreamFlix service."""

from __future__ import annotations

import base64
import binascii
import re
import unicodedata
import uuid
from datetime import datetime, timezone


DATA_URL_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w.+-]+=[\w.+-]+)*);base64,(?P<data>.*)$",
    re.DOTALL,
)


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def fold(value: str | None) -> str:
    """Case-fold text for comparisons, keeping accents intact."""

    if not value:
        return ""
    return unicodedata.normalize("NFC", value).casefold().strip()


def decoded_data_url_size(value: str) -> tuple[str, int]:
    """Return the MIME type and decoded byte size of a base64 data URL."""

    match = DATA_URL_RE.match(value)
    if not match:
        raise ValueError("Malformed data URL")
    payload = re.sub(r"\s+", "", match.group("data"))
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URL payload is not valid base64") from exc
    return match.group("mime").lower(), len(decoded)


def split_display_name(name: str | None) -> tuple[str | None, str | None]:
    """Split a display name into first and last name parts."""

    if not name:
        return None, None
    parts = name.strip().split(None, 1)
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[1]
