"""Datetime parsing: lax input -> strict timezone-aware output."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a remote timestamp into a timezone-aware datetime.

    Accepts the formats the remote stores emit:
    - 2026-02-02T22:21:29.975359+00:00 (PostgREST timestamptz)
    - 2026-02-02 22:21:29+00
    - 2026-02-02T22:21:29Z
    - 2026-02-02

    Missing timezone defaults to default_tz.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def from_timestamp(mtime: float) -> datetime:
    """Convert a file modification time (seconds since epoch) to UTC."""
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON payloads."""
    return ensure_aware(dt).isoformat()
