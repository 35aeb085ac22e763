from decimal import Decimal
from typing import Any, Dict, List, Tuple

import pytest

from riskgate.adapters.static import StaticAccountSource, StaticPriceSource
from riskgate.core.risk_manager import RiskManager
from riskgate.types.types import AccountInfo


class StubTelemetry:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def log(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))


def make_manager(
    *,
    cash: str = "0",
    pdt: bool = False,
    last_equity: str | None = "0",
    last_maintenance_margin: str | None = "0",
    prices: Dict[str, str] | None = None,
) -> RiskManager:
    """RiskManager hydrated from a static account with no positions."""
    account = AccountInfo(
        cash=Decimal(cash),
        pattern_day_trader=pdt,
        last_equity=None if last_equity is None else Decimal(last_equity),
        last_maintenance_margin=(
            None if last_maintenance_margin is None else Decimal(last_maintenance_margin)
        ),
    )
    price_source = StaticPriceSource({k: Decimal(v) for k, v in (prices or {}).items()})
    rm = RiskManager(StaticAccountSource(account), price_source)
    rm.initialize()
    return rm


@pytest.fixture
def telemetry() -> StubTelemetry:
    return StubTelemetry()


@pytest.fixture
def pdt_manager() -> RiskManager:
    return make_manager(pdt=True)


@pytest.fixture
def manager_factory():
    return make_manager
