"""Clock abstraction for time-dependent decisions.

Release policies and invite expiry are evaluated lazily against "now".
Services take a Clock so tests can pin or advance time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


def is_aware(instant: datetime) -> bool:
    """Whether instant carries a usable UTC offset."""
    return instant.tzinfo is not None and instant.utcoffset() is not None


class Clock(ABC):
    """Source of the current time (always timezone-aware UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant."""


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Clock pinned to a given instant, movable by hand."""

    def __init__(self, instant: datetime) -> None:
        self._instant = _require_aware(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        """Move the clock to an absolute instant."""
        self._instant = _require_aware(instant)

    def advance(self, delta: timedelta) -> None:
        """Move the clock forward by delta."""
        self._instant = self._instant + delta


def _require_aware(instant: datetime) -> datetime:
    if not is_aware(instant):
        msg = "FixedClock requires a timezone-aware datetime"
        raise ValueError(msg)
    return instant
