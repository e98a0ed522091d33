from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

_TICK = timedelta(microseconds=1)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Default wall-clock implementation."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def monotonic_after(previous: datetime | None, now: datetime) -> datetime:
    """Return ``now`` unless it would not sort strictly after ``previous``."""
    if previous is not None and now <= previous:
        return previous + _TICK
    return now
