"""Clock Port Interface.

Contract: Provides the current UTC timestamp in epoch milliseconds.
"""

from __future__ import annotations

from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Return current UTC time in epoch milliseconds.
        Should be monotonic non-decreasing within a run.
        """
        ...
