"""Utility functions: slugify, node id generation, date helpers."""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time, timezone
from typing import Iterable


def slugify(text: str) -> str:
    """Convert text to a URL-safe slug. Returns an empty string for blank input."""
    text = unicodedata.normalize("NFKD", text or "")
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"[^a-z0-9-]", "", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def generate_node_id(title: str, existing_ids: Iterable[str]) -> str:
    """Slugify a title into an id not present in existing_ids (suffixing -2, -3, ...)."""
    existing = set(existing_ids)
    base = slugify(title) or "untitled"
    if base not in existing:
        return base
    counter = 2
    while f"{base}-{counter}" in existing:
        counter += 1
    return f"{base}-{counter}"


def _truncate_ms(value: datetime) -> datetime:
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def now_utc() -> datetime:
    """Return the current UTC time with millisecond precision."""
    return _truncate_ms(datetime.now(timezone.utc))


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return to_iso(now_utc())


def to_iso(value: datetime) -> str:
    """Format a datetime as millisecond ISO 8601 in UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date(value: object) -> datetime | None:
    """Coerce a string, epoch-milliseconds number, date or datetime to an aware UTC datetime.

    Returns None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _truncate_ms(parsed.astimezone(timezone.utc))
