from __future__ import annotations

import uuid
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from riskgate.types.aliases import Ticker, UnixMillis

# -------- Constants --------

ZERO = Decimal("0")


# -------- Enums --------


class OrderKind(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeInForce(str, Enum):
    DAY = "day"  # canceled if not executed by the close of the trading day
    GTC = "gtc"  # good till canceled
    IOC = "ioc"  # immediate or cancel
    FOK = "fok"  # fill or kill
    OPG = "opg"  # market/limit on open
    CLS = "cls"  # market/limit on close


class DecisionResult(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


# --- Log ---


@dataclass
class LogEvent:
    """
    Generic structure for structured logging from the service and the bus.
    Goes to: log.event
    """

    level: str  # DEBUG, INFO, WARN, ERROR
    component: str
    msg: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts_utc: Optional[UnixMillis] = None
    wall_time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


EventType = str  # "stop" | "error"


@dataclass(frozen=True, slots=True)
class ControlEvent:
    type: EventType
    source: str  # e.g., "risk_service"
    ts_utc: int  # emission time (ms, UTC)
    details: Mapping[str, Any] | None = None


# --- Order types ---


@dataclass(frozen=True, slots=True)
class OrderType(ABC):
    """
    Abstract base class. Only market and limit orders can be priced by the risk check.
    """

    @property
    def kind(self) -> OrderKind:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class MarketOrder(OrderType):
    @property
    def kind(self) -> OrderKind:
        return OrderKind.MARKET


@dataclass(frozen=True, slots=True)
class LimitOrder(OrderType):
    limit_price: Decimal

    def __post_init__(self) -> None:
        if self.limit_price <= ZERO:
            raise ValueError("LimitOrder.limit_price must be > 0.")

    @property
    def kind(self) -> OrderKind:
        return OrderKind.LIMIT


@dataclass(frozen=True, slots=True)
class StopOrder(OrderType):
    stop_price: Decimal

    def __post_init__(self) -> None:
        if self.stop_price <= ZERO:
            raise ValueError("StopOrder.stop_price must be > 0.")

    @property
    def kind(self) -> OrderKind:
        return OrderKind.STOP


@dataclass(frozen=True, slots=True)
class StopLimitOrder(OrderType):
    stop_price: Decimal
    limit_price: Decimal

    def __post_init__(self) -> None:
        if self.stop_price <= ZERO or self.limit_price <= ZERO:
            raise ValueError("StopLimitOrder.stop_price/limit_price must be > 0.")

    @property
    def kind(self) -> OrderKind:
        return OrderKind.STOP_LIMIT


# --- TradeIntent ---


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True, kw_only=True)
class TradeIntent:
    """
    A proposed trade. Positive qty buys, negative qty sells.
    """

    ticker: Ticker
    qty: int
    order_type: OrderType = field(default_factory=MarketOrder)
    id: str = field(default_factory=_new_id)
    strategy: Optional[str] = None
    time_in_force: TimeInForce = TimeInForce.DAY

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("TradeIntent.id must be a non-empty string.")
        if not self.ticker:
            raise ValueError("TradeIntent.ticker must be a non-empty string.")


# --- Lot (Fill) ---


@dataclass(frozen=True, slots=True, kw_only=True)
class Lot:
    """A single fill. Shares are signed (negative for sells)."""

    ticker: Ticker
    shares: Decimal
    price: Decimal
    id: str = field(default_factory=_new_id)
    order_id: str = field(default_factory=_new_id)
    fill_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# --- Market status ---


@dataclass(frozen=True, slots=True, kw_only=True)
class MarketStatus:
    is_open: bool
    next_open: Optional[datetime] = None
    next_close: Optional[datetime] = None


Input = Union[Lot, TradeIntent, MarketStatus]


# --- Decisions ---


@dataclass(frozen=True, slots=True)
class DenyReason(ABC):
    """Abstract base for denial reasons."""


@dataclass(frozen=True, slots=True)
class InsufficientBuyingPower(DenyReason):
    buying_power: Decimal


@dataclass(frozen=True, slots=True)
class ChangeInPositionSide(DenyReason):
    pass


@dataclass(frozen=True, slots=True)
class Granted:
    intent: TradeIntent

    @property
    def result(self) -> DecisionResult:
        return DecisionResult.GRANTED


@dataclass(frozen=True, slots=True)
class Denied:
    intent: TradeIntent
    reason: DenyReason

    @property
    def result(self) -> DecisionResult:
        return DecisionResult.DENIED


RiskCheckResponse = Union[Granted, Denied]


# --- Account ---


@dataclass(frozen=True)
class AccountInfo:
    """Account fields returned by the account source."""

    cash: Decimal
    pattern_day_trader: bool = False
    last_equity: Optional[Decimal] = None
    last_maintenance_margin: Optional[Decimal] = None


@dataclass(frozen=True)
class BrokerPosition:
    ticker: Ticker
    quantity: Decimal
    average_price: Decimal


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Account-level flags captured once at hydration. Never mutated by the event stream;
    refreshing them requires an explicit re-hydration.
    """

    is_pattern_day_trader: bool = False
    last_equity: Optional[Decimal] = None
    last_maintenance_margin: Optional[Decimal] = None

    @property
    def has_prior_day(self) -> bool:
        return self.last_equity is not None and self.last_maintenance_margin is not None

    @classmethod
    def from_account(cls, account: AccountInfo) -> AccountSnapshot:
        return cls(
            is_pattern_day_trader=account.pattern_day_trader,
            last_equity=account.last_equity,
            last_maintenance_margin=account.last_maintenance_margin,
        )


@dataclass
class Position:
    ticker: Ticker
    shares: Decimal = ZERO
    price: Decimal = ZERO  # latest mark (last fill or last refresh), not a cost basis


@dataclass(frozen=True)
class PositionView:
    ticker: Ticker
    shares: Decimal
    price: Decimal

    @property
    def market_value(self) -> Decimal:
        return self.shares * self.price


@dataclass(frozen=True)
class PortfolioMetrics:
    cash: Decimal
    long_exposure: Decimal
    short_exposure: Decimal
    gross_exposure: Decimal
    net_exposure: Decimal
    equity: Decimal
    initial_margin: Decimal
    maintenance_margin: Decimal
    multiplier: Decimal
    regt_buying_power: Decimal
    daytrading_buying_power: Optional[Decimal]  # None when the day-trading metric is undefined
    buying_power: Decimal
    positions: tuple[PositionView, ...] = field(default_factory=tuple)
