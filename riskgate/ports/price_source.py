"""PriceSource Port Interface.

Contract: Return the latest traded price for a ticker. Used only to price market orders.
Failures must raise, never default.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol


class PriceSource(Protocol):
    def get_latest_price(self, ticker: str) -> Decimal:
        """Raise PriceUnavailableError if the price cannot be obtained."""
        ...
