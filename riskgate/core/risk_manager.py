"""
Risk decision engine.

Owns the Portfolio, hydrates it from an AccountSource and answers admission checks for
trade intents. Market orders are priced through a PriceSource.

Every read and mutation of the portfolio goes through one re-entrant lock so that a
decision is always computed from a consistent joint snapshot of cash and positions.
The price lookup for market orders happens before the lock is taken.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Optional

from riskgate.config.configs import RiskConfig
from riskgate.core import metrics
from riskgate.core.portfolio import Portfolio
from riskgate.errors.errors import UnsupportedOrderTypeError
from riskgate.ports.account_source import AccountSource
from riskgate.ports.price_source import PriceSource
from riskgate.types.aliases import Ticker
from riskgate.types.types import (
    AccountSnapshot,
    ChangeInPositionSide,
    Denied,
    Granted,
    InsufficientBuyingPower,
    LimitOrder,
    Lot,
    MarketOrder,
    PortfolioMetrics,
    Position,
    PositionView,
    RiskCheckResponse,
    TradeIntent,
)
from riskgate.utils.utility import signum, to_quantity

_LOGGER = logging.getLogger(__name__)


class RiskManager:
    def __init__(
        self,
        account_source: AccountSource,
        price_source: PriceSource,
        config: Optional[RiskConfig] = None,
        portfolio: Optional[Portfolio] = None,
    ) -> None:
        self._account_source = account_source
        self._price_source = price_source
        self._cfg = config or RiskConfig()
        self._portfolio = portfolio or Portfolio()
        self._lock = threading.RLock()

    # --- Hydration ---

    def initialize(self) -> AccountSnapshot:
        """
        Seed the portfolio from the account source: cash, account flags and positions
        (marked at their average entry price). Errors from the source propagate.
        """
        account = self._account_source.get_account()
        broker_positions = self._account_source.get_positions()
        snapshot = AccountSnapshot.from_account(account)
        positions = [
            Position(ticker=bp.ticker, shares=bp.quantity, price=bp.average_price)
            for bp in broker_positions
        ]
        with self._lock:
            self._portfolio.hydrate(snapshot, positions, account.cash)
        _LOGGER.info(
            "portfolio_hydrated",
            extra={
                "event": "portfolio_hydrated",
                "cash": str(account.cash),
                "positions": len(positions),
                "pattern_day_trader": snapshot.is_pattern_day_trader,
                "has_prior_day": snapshot.has_prior_day,
            },
        )
        return snapshot

    def rehydrate(self) -> AccountSnapshot:
        """Refresh account flags and state; the only path that changes the AccountSnapshot."""
        return self.initialize()

    # --- Mutations ---

    def update_holdings(self, ticker: Ticker, shares: Decimal, price: Decimal) -> None:
        with self._lock:
            self._portfolio.apply_fill(ticker, shares, price)
        _LOGGER.debug(
            "holdings_updated",
            extra={
                "event": "holdings_updated",
                "ticker": ticker,
                "shares": str(shares),
                "price": str(price),
            },
        )

    def apply_lot(self, lot: Lot) -> None:
        self.update_holdings(lot.ticker, lot.shares, lot.price)

    def update_price(self, ticker: Ticker, price: Decimal) -> None:
        with self._lock:
            self._portfolio.refresh_price(ticker, price)

    def update_cash(self, cash: Decimal) -> None:
        with self._lock:
            self._portfolio.set_cash(cash)

    def refresh_marks(self) -> dict[Ticker, Decimal]:
        """
        Re-mark every held ticker from the price source. Any lookup failure propagates
        and leaves the portfolio untouched.
        """
        with self._lock:
            tickers = self._portfolio.tickers()
        prices = {t: self._price_source.get_latest_price(t) for t in tickers}
        with self._lock:
            for ticker, price in prices.items():
                self._portfolio.refresh_price(ticker, price)
        return prices

    # --- Reads ---

    @property
    def snapshot(self) -> AccountSnapshot:
        with self._lock:
            return self._portfolio.snapshot

    @property
    def cash(self) -> Decimal:
        with self._lock:
            return self._portfolio.cash

    def position(self, ticker: Ticker) -> Optional[PositionView]:
        with self._lock:
            return self._portfolio.position(ticker)

    def long_market_exposure(self) -> Decimal:
        with self._lock:
            return metrics.long_exposure(self._portfolio.iter_positions())

    def short_market_exposure(self) -> Decimal:
        with self._lock:
            return metrics.short_exposure(self._portfolio.iter_positions())

    def gross_market_exposure(self) -> Decimal:
        with self._lock:
            return metrics.gross_exposure(self._portfolio.iter_positions())

    def net_market_exposure(self) -> Decimal:
        with self._lock:
            return metrics.net_exposure(self._portfolio.iter_positions())

    def equity(self) -> Decimal:
        with self._lock:
            return metrics.equity(self._portfolio)

    def initial_margin(self) -> Decimal:
        with self._lock:
            return metrics.initial_margin(self._portfolio.iter_positions())

    def maintenance_margin(self) -> Decimal:
        with self._lock:
            return metrics.maintenance_margin(self._portfolio.iter_positions())

    def multiplier(self) -> Decimal:
        with self._lock:
            return metrics.multiplier(
                self._portfolio.snapshot.is_pattern_day_trader, metrics.equity(self._portfolio)
            )

    def regt_buying_power(self) -> Decimal:
        return self.metrics().regt_buying_power

    def daytrading_buying_power(self) -> Optional[Decimal]:
        return self.metrics().daytrading_buying_power

    def buying_power(self) -> Decimal:
        return self.metrics().buying_power

    def metrics(self) -> PortfolioMetrics:
        with self._lock:
            return metrics.compute_metrics(
                self._portfolio, daytrading_enabled=self._cfg.daytrading_enabled
            )

    # --- Admission check ---

    def risk_check(self, trade_intent: TradeIntent) -> RiskCheckResponse:
        """
        Decide whether trade_intent may go to market.

        Reducing trades (opposite sign to the held position) are granted unless they
        would flip the position, which is denied with ChangeInPositionSide. Every other
        trade needs buying power strictly greater than its required amount.

        Raises UnsupportedOrderTypeError for opening trades that are neither market nor
        limit orders, QuantityConversionError for unusable quantities and whatever the
        price source raises for market orders.
        """
        qty = to_quantity(trade_intent.qty)
        ticker = trade_intent.ticker

        with self._lock:
            held = self._portfolio.position(ticker)
        if held is not None and signum(qty) * signum(held.shares) == -1:
            return self._closing_check(trade_intent, qty, held)

        order_type = trade_intent.order_type
        latest_price: Optional[Decimal] = None
        if isinstance(order_type, MarketOrder):
            latest_price = self._price_source.get_latest_price(ticker)
        elif not isinstance(order_type, LimitOrder):
            raise UnsupportedOrderTypeError(
                "Risk manager can only deal with Market and Limit orders currently",
                order_type=order_type.kind.value,
                intent_id=trade_intent.id,
                component="risk_manager",
            )

        with self._lock:
            # state may have moved while the price was fetched
            held = self._portfolio.position(ticker)
            if held is not None and signum(qty) * signum(held.shares) == -1:
                return self._closing_check(trade_intent, qty, held)

            if isinstance(order_type, LimitOrder):
                required = order_type.limit_price * abs(qty)
            else:
                assert latest_price is not None
                required = latest_price * self._cfg.market_order_markup * abs(qty)

            buying_power = metrics.compute_metrics(
                self._portfolio, daytrading_enabled=self._cfg.daytrading_enabled
            ).buying_power

        if buying_power > required:
            decision: RiskCheckResponse = Granted(trade_intent)
        else:
            decision = Denied(trade_intent, InsufficientBuyingPower(buying_power))
        _LOGGER.debug(
            "risk_check_evaluated",
            extra={
                "event": "risk_check_evaluated",
                "intent_id": trade_intent.id,
                "ticker": ticker,
                "required": str(required),
                "buying_power": str(buying_power),
                "result": decision.result.value,
            },
        )
        return decision

    @staticmethod
    def _closing_check(
        trade_intent: TradeIntent, qty: Decimal, held: PositionView
    ) -> RiskCheckResponse:
        if abs(qty) > abs(held.shares):
            return Denied(trade_intent, ChangeInPositionSide())
        return Granted(trade_intent)
