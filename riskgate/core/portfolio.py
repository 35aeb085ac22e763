"""
In-memory portfolio state for a single account.

Holds cash, one Position per ticker and the AccountSnapshot captured at hydration.
Prices stored on a position are the latest mark (last fill or last refresh), never a
cost basis. Every fill is booked as a cash flow at the fill price.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Optional

from riskgate.types.aliases import Ticker
from riskgate.types.types import ZERO, AccountSnapshot, Position, PositionView


class Portfolio:
    def __init__(
        self,
        cash: Decimal = ZERO,
        snapshot: Optional[AccountSnapshot] = None,
        positions: Optional[Iterable[Position]] = None,
    ) -> None:
        self._cash: Decimal = cash
        self._snapshot: AccountSnapshot = snapshot or AccountSnapshot()
        self._positions: dict[Ticker, Position] = {}
        for pos in positions or ():
            self._positions[pos.ticker] = Position(pos.ticker, pos.shares, pos.price)

    # --- Mutations ---

    def apply_fill(self, ticker: Ticker, delta_shares: Decimal, fill_price: Decimal) -> None:
        """
        Book a fill. Unheld tickers are inserted; held tickers add the shares and take
        the fill price as the new mark. Cash decreases by delta_shares * fill_price.
        """
        pos = self._positions.get(ticker)
        if pos is None:
            self._positions[ticker] = Position(ticker, delta_shares, fill_price)
        else:
            pos.shares += delta_shares
            pos.price = fill_price
        self._cash -= delta_shares * fill_price

    def refresh_price(self, ticker: Ticker, price: Decimal) -> bool:
        """Overwrite the mark of a held ticker. Returns False (and inserts nothing) otherwise."""
        pos = self._positions.get(ticker)
        if pos is None:
            return False
        pos.price = price
        return True

    def set_cash(self, amount: Decimal) -> None:
        self._cash = amount

    def hydrate(
        self,
        snapshot: AccountSnapshot,
        positions: Iterable[Position],
        cash: Decimal,
    ) -> None:
        """Replace the whole state at once."""
        fresh: dict[Ticker, Position] = {}
        for pos in positions:
            existing = fresh.get(pos.ticker)
            if existing is None:
                fresh[pos.ticker] = Position(pos.ticker, pos.shares, pos.price)
            else:
                existing.shares += pos.shares
                existing.price = pos.price
        self._positions = fresh
        self._snapshot = snapshot
        self._cash = cash

    # --- Reads ---

    @property
    def cash(self) -> Decimal:
        return self._cash

    @property
    def snapshot(self) -> AccountSnapshot:
        return self._snapshot

    def position(self, ticker: Ticker) -> Optional[PositionView]:
        pos = self._positions.get(ticker)
        if pos is None:
            return None
        return PositionView(pos.ticker, pos.shares, pos.price)

    @property
    def positions(self) -> Mapping[Ticker, PositionView]:
        return {t: PositionView(p.ticker, p.shares, p.price) for t, p in self._positions.items()}

    def tickers(self) -> list[Ticker]:
        return sorted(self._positions)

    def iter_positions(self) -> Iterable[Position]:
        # internal objects; callers must not mutate
        return self._positions.values()

    def __len__(self) -> int:
        return len(self._positions)

    def __repr__(self) -> str:
        return f"Portfolio(cash={self._cash}, positions={len(self._positions)})"
