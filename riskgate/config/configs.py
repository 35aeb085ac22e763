from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

"""
Here, we collect all the different configs
"""


@dataclass(frozen=True)
class RunContext:
    run_id: str
    git_sha: str
    started_at: str


@dataclass(frozen=True)
class ReturnConfig:
    internal_config: Mapping[str, Any]
    redacted_config: Mapping[str, Any]
    redacted_count: int
    config_hash: str
    config_keys_total: int


# --- Bus ---


@dataclass
class SubscriptionConfig:
    topics: set[str]
    # None means "use bus default"
    buffer_size: Optional[int] = None


class BusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # seconds to wait between flush state checks
    flush_check_interval: float = Field(default=0.01, gt=0)
    # default mailbox size when a subscription doesn't specify one
    default_buffer_size: int = Field(default=1024, gt=0)
    validate_schema: bool = False


# --- Collaborators ---


class AlpacaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_url: str = Field(
        default="https://paper-api.alpaca.markets", description="Alpaca trading API root"
    )
    key_id: Optional[str] = Field(default=None, description="APCA-API-KEY-ID")
    secret_key: Optional[str] = Field(default=None, description="APCA-API-SECRET-KEY")
    timeout: float = Field(default=10.0, gt=0, description="HTTP timeout in seconds")


class AccountSourceConfig(BaseModel):
    """Where hydration comes from. `static` seeds the portfolio from the fields below."""

    model_config = ConfigDict(extra="forbid")
    kind: Literal["alpaca", "static"] = "alpaca"
    cash: Decimal = Decimal("0")
    pattern_day_trader: bool = False
    last_equity: Optional[Decimal] = None
    last_maintenance_margin: Optional[Decimal] = None


class PriceSourceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["http", "static", "none"] = "http"
    datastore_url: str = Field(default="http://localhost:8080", description="Price datastore root")
    timeout: float = Field(default=5.0, gt=0)
    static_prices: dict[str, Decimal] = Field(default_factory=dict)


# --- Risk ---


class RiskConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    market_order_markup: Decimal = Field(
        default=Decimal("1.03"), gt=0, description="Slippage buffer applied to market orders"
    )
    daytrading_enabled: bool = Field(
        default=True, description="Include day-trading buying power in buying power"
    )


# --- Service ---


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = "risk_service"
    buffer_size: Optional[int] = Field(default=None, gt=0)
    stop_on_market_close: bool = True
    market_close_threshold_hours: float = Field(default=12.0, ge=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_lines: bool = False
    telemetry_path: Optional[Path] = None


class Config(BaseModel):
    model_config = ConfigDict(extra="forbid")
    alpaca: AlpacaConfig = Field(default_factory=AlpacaConfig)
    account: AccountSourceConfig = Field(default_factory=AccountSourceConfig)
    price_source: PriceSourceConfig = Field(default_factory=PriceSourceConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
