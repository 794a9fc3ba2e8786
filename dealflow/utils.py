"""Shared utility functions used across DealFlow modules."""
from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def encode_tags(tags: list[str] | None) -> str:
    """Encode a tag sequence as JSON array text for storage and transport."""
    return json.dumps(list(tags or []))


def decode_tags(value: str | None) -> list[str]:
    """Decode tags written by :func:`encode_tags`. Malformed input yields ``[]``."""
    parsed = json_parse(value, [])
    if not isinstance(parsed, list):
        return []
    return [str(t) for t in parsed]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def next_stamp(previous: datetime | None) -> datetime:
    """Return "now", nudged forward so it is strictly after *previous*."""
    now = utcnow()
    previous = as_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now
