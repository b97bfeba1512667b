"""Time sources used for timestamping, TTL and expiry computations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

__all__ = ["Clock", "SystemClock", "ensure_aware", "utc_now"]


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_aware(timestamp: datetime) -> datetime:
    """Treat naive timestamps as UTC so comparisons never mix offsets."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


@runtime_checkable
class Clock(Protocol):
    """Anything that can report the current time."""

    def now(self) -> datetime:  # pragma: no cover - protocol
        ...


class SystemClock:
    """Wall-clock implementation backed by :func:`utc_now`."""

    def now(self) -> datetime:
        return utc_now()
