from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Normalise timestamps read back from SQLite (naive) to UTC-aware."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(value: datetime | None, *, now: datetime | None = None) -> bool:
    if value is None:
        return False
    return ensure_aware(value) < (now or utcnow())
