"""
Margin, exposure and buying-power formulas.

Pure functions over a Portfolio. All arithmetic is exact decimal.Decimal.

Rates and thresholds:
    - initial margin: flat 50% of |shares| * price (Reg-T), long and short alike
    - maintenance margin: long marks >= 2.50 use 30%, else 100%;
      short marks >= 5.00 use 30%, else 100%
    - multiplier: PDT tiers on equity (< 2,000 -> 1, < 25,000 -> 2, else 4);
      non-PDT is 2 only when equity > 25,000
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from riskgate.core.portfolio import Portfolio
from riskgate.types.types import ZERO, AccountSnapshot, PortfolioMetrics, Position

INITIAL_MARGIN_RATE = Decimal("0.5")
MAINTENANCE_RATE_STANDARD = Decimal("0.3")
MAINTENANCE_RATE_LOW_PRICED = Decimal("1.0")
LONG_LOW_PRICE_THRESHOLD = Decimal("2.50")
SHORT_LOW_PRICE_THRESHOLD = Decimal("5.00")

PDT_MIN_EQUITY = Decimal("2000")
MARGIN_EQUITY_THRESHOLD = Decimal("25000")
REGT_LEVERAGE = Decimal("2")


# --- Exposure ---


def long_exposure(positions: Iterable[Position]) -> Decimal:
    return sum((p.shares * p.price for p in positions if p.shares > ZERO), ZERO)


def short_exposure(positions: Iterable[Position]) -> Decimal:
    return sum((-p.shares * p.price for p in positions if p.shares < ZERO), ZERO)


def gross_exposure(positions: Iterable[Position]) -> Decimal:
    return sum((abs(p.shares) * p.price for p in positions), ZERO)


def net_exposure(positions: Iterable[Position]) -> Decimal:
    return sum((p.shares * p.price for p in positions), ZERO)


def equity(portfolio: Portfolio) -> Decimal:
    return net_exposure(portfolio.iter_positions()) + portfolio.cash


# --- Margin ---


def initial_margin(positions: Iterable[Position]) -> Decimal:
    return sum((abs(p.shares) * p.price * INITIAL_MARGIN_RATE for p in positions), ZERO)


def maintenance_rate(shares: Decimal, price: Decimal) -> Decimal:
    # zero shares count as long
    if shares >= ZERO:
        threshold = LONG_LOW_PRICE_THRESHOLD
    else:
        threshold = SHORT_LOW_PRICE_THRESHOLD
    return MAINTENANCE_RATE_STANDARD if price >= threshold else MAINTENANCE_RATE_LOW_PRICED


def maintenance_margin(positions: Iterable[Position]) -> Decimal:
    return sum(
        (abs(p.shares) * p.price * maintenance_rate(p.shares, p.price) for p in positions), ZERO
    )


def multiplier(is_pattern_day_trader: bool, equity_value: Decimal) -> Decimal:
    """
    Intraday leverage multiplier. The PDT tier compares with `<` and the non-PDT tier
    with `>` at the same 25,000 threshold.
    """
    if is_pattern_day_trader:
        if equity_value < PDT_MIN_EQUITY:
            return Decimal("1")
        if equity_value < MARGIN_EQUITY_THRESHOLD:
            return Decimal("2")
        return Decimal("4")
    if equity_value > MARGIN_EQUITY_THRESHOLD:
        return Decimal("2")
    return Decimal("1")


# --- Buying power ---


def regt_buying_power(equity_value: Decimal, initial_margin_value: Decimal) -> Decimal:
    return max(ZERO, (equity_value - initial_margin_value) * REGT_LEVERAGE)


def daytrading_buying_power(
    snapshot: AccountSnapshot,
    multiplier_value: Decimal,
    gross_exposure_value: Decimal,
) -> Optional[Decimal]:
    """None when the prior-day equity or maintenance margin is unknown."""
    if snapshot.last_equity is None or snapshot.last_maintenance_margin is None:
        return None
    base = snapshot.last_equity - snapshot.last_maintenance_margin
    return max(ZERO, base * multiplier_value - gross_exposure_value)


def buying_power(regt: Decimal, daytrading: Optional[Decimal]) -> Decimal:
    if daytrading is None:
        return regt
    return max(regt, daytrading)


def compute_metrics(portfolio: Portfolio, *, daytrading_enabled: bool = True) -> PortfolioMetrics:
    """Compute every metric from one pass over the current state."""
    positions = list(portfolio.iter_positions())
    snapshot = portfolio.snapshot

    long_exp = long_exposure(positions)
    short_exp = short_exposure(positions)
    gross_exp = gross_exposure(positions)
    net_exp = net_exposure(positions)
    eq = net_exp + portfolio.cash
    im = initial_margin(positions)
    mm = maintenance_margin(positions)
    mult = multiplier(snapshot.is_pattern_day_trader, eq)
    regt = regt_buying_power(eq, im)
    dtbp = daytrading_buying_power(snapshot, mult, gross_exp) if daytrading_enabled else None

    return PortfolioMetrics(
        cash=portfolio.cash,
        long_exposure=long_exp,
        short_exposure=short_exp,
        gross_exposure=gross_exp,
        net_exposure=net_exp,
        equity=eq,
        initial_margin=im,
        maintenance_margin=mm,
        multiplier=mult,
        regt_buying_power=regt,
        daytrading_buying_power=dtbp,
        buying_power=buying_power(regt, dtbp),
        positions=tuple(view for _, view in sorted(portfolio.positions.items())),
    )
