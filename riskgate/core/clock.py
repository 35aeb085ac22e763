"""
now() provides the canonical notion of time for the service: bus envelopes, log events
and the market-close shutdown check all read it.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

# Milliseconds since epoch (UTC)
Millis = int


class ClockError(RuntimeError):
    """Raised when a clock operation would violate its invariants (e.g., going backward)."""


def to_millis(dt: datetime) -> Millis:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class Clock(ABC):
    """
    Time source interface.

    All timestamps are UTC epoch milliseconds (int). Implementations must be
    monotonic non-decreasing within a run.
    """

    @abstractmethod
    def now(self) -> Millis:
        """Current time in UTC epoch milliseconds."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_realtime(self) -> bool:
        raise NotImplementedError


class RealtimeClock(Clock):
    """
    Anchors to the wall-clock at construction and then advances using time.monotonic(),
    so now() stays monotonic even if the OS clock is adjusted.
    """

    def __init__(self) -> None:
        self._t0_wall_ms: Millis = int(time.time() * 1000)
        self._t0_mono: float = time.monotonic()

    @property
    def is_realtime(self) -> bool:
        return True

    def now(self) -> Millis:
        elapsed_ms = int((time.monotonic() - self._t0_mono) * 1000)
        return self._t0_wall_ms + elapsed_ms


class SimClock(Clock):
    """Manually-advanced clock. Advances must be forward."""

    def __init__(self, start_ms: Millis) -> None:
        if start_ms < 0:
            raise ValueError("start_ms must be >= 0")
        self._current_ms: Optional[Millis] = int(start_ms)

    @property
    def is_realtime(self) -> bool:
        return False

    def now(self) -> Millis:
        if self._current_ms is None:
            raise ClockError("SimClock: _current_ms is not initialized")
        return self._current_ms

    def advance_to(self, ts_ms: Millis) -> Millis:
        if ts_ms < self.now():
            raise ClockError(f"SimClock: cannot go backwards: {ts_ms} < {self.now()}")
        self._current_ms = ts_ms
        return self._current_ms

    def advance_by(self, delta_ms: Millis) -> Millis:
        if delta_ms < 0:
            raise ClockError(f"SimClock: cannot go backwards, delta_ms < 0: {delta_ms}")
        return self.advance_to(self.now() + int(delta_ms))
