"""
Injectable time source for the approval services.

Services stamp ``created_at``, vote times and expiry deadlines from a
``Clock`` passed to their constructor.  Engines never see a clock: the
current time reaches condition evaluation only as the ``current_time``
namespace of an ``EvaluationContext``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware "now" values."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Expiry tests drive it forward with ``advance_hours``; the value is
    otherwise stable across calls.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(hours * 3600)
