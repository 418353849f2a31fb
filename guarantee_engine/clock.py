"""Injectable time source.

Services take a ``Clock`` (any zero-argument callable returning an aware UTC
``datetime``) so tests can pin time precisely around the verification window.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Production clock."""
    return datetime.now(UTC)


def require_utc_timestamp(name: str, value: datetime) -> None:
    """Raise ValueError unless ``value`` is timezone-aware with offset 0."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")
