from decimal import Decimal

import pytest

from riskgate.adapters.static import (
    StaticAccountSource,
    StaticPriceSource,
    UnsupportedAccountSource,
    UnsupportedPriceSource,
)
from riskgate.config.configs import RiskConfig
from riskgate.core.risk_manager import RiskManager
from riskgate.errors.errors import (
    PriceUnavailableError,
    QuantityConversionError,
    UnsupportedOperationError,
    UnsupportedOrderTypeError,
)
from riskgate.types.types import (
    AccountInfo,
    BrokerPosition,
    ChangeInPositionSide,
    Denied,
    Granted,
    InsufficientBuyingPower,
    LimitOrder,
    MarketOrder,
    StopLimitOrder,
    StopOrder,
    TradeIntent,
)

D = Decimal


def limit(ticker: str, qty: int, price: str) -> TradeIntent:
    return TradeIntent(ticker=ticker, qty=qty, order_type=LimitOrder(D(price)))


@pytest.fixture
def book(pdt_manager) -> RiskManager:
    """AAPL +1 @ 100, TSLA -2 @ 80, cash 300: buying power 220."""
    pdt_manager.update_holdings("AAPL", D("1"), D("100"))
    pdt_manager.update_holdings("TSLA", D("-2"), D("80"))
    pdt_manager.update_cash(D("300"))
    return pdt_manager


class TestLimitOrders:
    def test_flat_account_buy_within_cash_is_granted(self, manager_factory) -> None:
        rm = manager_factory(cash="300")
        intent = limit("AAPL", 1, "100")

        assert rm.metrics().positions == ()
        assert rm.buying_power() > D("100")
        assert rm.risk_check(intent) == Granted(intent)

    def test_book_buying_power(self, book) -> None:
        assert book.buying_power() == D("220")

    def test_opening_buy_within_buying_power_is_granted(self, book) -> None:
        intent = limit("AAPL", 1, "100")
        assert book.risk_check(intent) == Granted(intent)

    def test_opening_buy_above_buying_power_is_denied(self, book) -> None:
        intent = limit("AAPL", 1, "240")
        decision = book.risk_check(intent)
        assert decision == Denied(intent, InsufficientBuyingPower(D("220")))

    def test_required_equal_to_buying_power_is_denied(self, book) -> None:
        """Buying power must be strictly greater than the requirement."""
        intent = limit("AAPL", 1, "220")
        assert isinstance(book.risk_check(intent), Denied)

    def test_flip_is_denied(self, book) -> None:
        intent = limit("AAPL", -2, "120")
        assert book.risk_check(intent) == Denied(intent, ChangeInPositionSide())

    def test_reduction_is_granted(self, book) -> None:
        intent = limit("AAPL", -1, "120")
        assert book.risk_check(intent) == Granted(intent)

    def test_reduction_of_short_is_granted_without_buying_power(self, book) -> None:
        book.update_cash(D("-10000"))
        intent = limit("TSLA", 2, "1000")
        assert book.risk_check(intent) == Granted(intent)

    def test_adding_to_short_needs_buying_power(self, book) -> None:
        intent = limit("TSLA", -10, "80")
        assert book.risk_check(intent) == Denied(intent, InsufficientBuyingPower(D("220")))

    def test_risk_check_does_not_mutate_state(self, book) -> None:
        before = book.metrics()
        book.risk_check(limit("AAPL", 1, "100"))
        book.risk_check(limit("AAPL", -2, "100"))
        assert book.metrics() == before


class TestMarketOrders:
    def test_market_order_is_priced_with_markup(self, manager_factory) -> None:
        # bp = 1000 * 2 = 2000; 1 * 100 * 1.03 = 103 per share
        rm = manager_factory(cash="1000", prices={"AAPL": "100"})
        granted = TradeIntent(ticker="AAPL", qty=19, order_type=MarketOrder())
        denied = TradeIntent(ticker="AAPL", qty=20, order_type=MarketOrder())

        assert isinstance(rm.risk_check(granted), Granted)
        assert rm.risk_check(denied) == Denied(denied, InsufficientBuyingPower(D("2000")))

    def test_custom_markup(self) -> None:
        rm = RiskManager(
            StaticAccountSource(AccountInfo(cash=D("1000"))),
            StaticPriceSource({"AAPL": D("100")}),
            RiskConfig(market_order_markup=D("1")),
        )
        rm.initialize()
        intent = TradeIntent(ticker="AAPL", qty=19)
        assert isinstance(rm.risk_check(intent), Granted)
        assert isinstance(rm.risk_check(TradeIntent(ticker="AAPL", qty=20)), Denied)

    def test_missing_price_propagates(self, manager_factory) -> None:
        rm = manager_factory(cash="1000")
        with pytest.raises(PriceUnavailableError):
            rm.risk_check(TradeIntent(ticker="AAPL", qty=1))

    def test_absent_price_source_propagates(self) -> None:
        rm = RiskManager(StaticAccountSource(AccountInfo(cash=D("1000"))), UnsupportedPriceSource())
        rm.initialize()
        with pytest.raises(UnsupportedOperationError):
            rm.risk_check(TradeIntent(ticker="AAPL", qty=1))

    def test_closing_market_order_skips_price_lookup(self, book) -> None:
        intent = TradeIntent(ticker="AAPL", qty=-1)
        assert book.risk_check(intent) == Granted(intent)


class TestUnsupportedInputs:
    @pytest.mark.parametrize(
        "order_type", [StopOrder(D("90")), StopLimitOrder(D("90"), D("89"))]
    )
    def test_opening_stop_orders_raise(self, book, order_type) -> None:
        intent = TradeIntent(ticker="MSFT", qty=1, order_type=order_type)
        with pytest.raises(UnsupportedOrderTypeError) as exc:
            book.risk_check(intent)
        assert exc.value.intent_id == intent.id

    def test_closing_stop_order_is_granted(self, book) -> None:
        intent = TradeIntent(ticker="AAPL", qty=-1, order_type=StopOrder(D("90")))
        assert book.risk_check(intent) == Granted(intent)

    @pytest.mark.parametrize("qty", [True, 1.5, float("nan"), 2**63])
    def test_bad_quantity_raises(self, book, qty) -> None:
        intent = TradeIntent(ticker="AAPL", qty=qty, order_type=LimitOrder(D("1")))
        with pytest.raises(QuantityConversionError):
            book.risk_check(intent)


class TestHydration:
    def test_initialize_seeds_positions_at_average_entry(self) -> None:
        source = StaticAccountSource(
            AccountInfo(
                cash=D("5000"),
                pattern_day_trader=True,
                last_equity=D("6000"),
                last_maintenance_margin=D("100"),
            ),
            [BrokerPosition("AAPL", D("10"), D("150.25")), BrokerPosition("TSLA", D("-3"), D("200"))],
        )
        rm = RiskManager(source, StaticPriceSource())
        snapshot = rm.initialize()

        assert snapshot.is_pattern_day_trader is True
        assert rm.cash == D("5000")
        assert rm.position("AAPL").price == D("150.25")
        assert rm.position("TSLA").shares == D("-3")
        assert rm.equity() == D("5000") + D("1502.5") - D("600")

    def test_initialize_propagates_source_errors(self) -> None:
        rm = RiskManager(UnsupportedAccountSource(), StaticPriceSource())
        with pytest.raises(UnsupportedOperationError):
            rm.initialize()

    def test_rehydrate_replaces_stream_state(self, book) -> None:
        book.update_holdings("MSFT", D("5"), D("300"))
        book.rehydrate()
        assert book.position("MSFT") is None
        assert book.position("AAPL") is None
        assert book.cash == D("0")

    def test_fills_never_touch_snapshot(self, book) -> None:
        snapshot = book.snapshot
        book.update_holdings("AAPL", D("100"), D("1"))
        assert book.snapshot == snapshot


class TestPriceMaintenance:
    def test_update_price_ignores_unheld_tickers(self, book) -> None:
        book.update_price("MSFT", D("300"))
        assert book.position("MSFT") is None

    def test_update_price_changes_mark_not_cash(self, book) -> None:
        book.update_price("AAPL", D("110"))
        assert book.position("AAPL").price == D("110")
        assert book.cash == D("300")
        assert book.long_market_exposure() == D("110")

    def test_refresh_marks(self, manager_factory) -> None:
        rm = manager_factory(cash="0", prices={"AAPL": "120", "TSLA": "70"})
        rm.update_holdings("AAPL", D("1"), D("100"))
        rm.update_holdings("TSLA", D("-1"), D("80"))

        assert rm.refresh_marks() == {"AAPL": D("120"), "TSLA": D("70")}
        assert rm.net_market_exposure() == D("50")

    def test_refresh_marks_failure_leaves_state(self, manager_factory) -> None:
        rm = manager_factory(prices={"AAPL": "120"})
        rm.update_holdings("AAPL", D("1"), D("100"))
        rm.update_holdings("TSLA", D("-1"), D("80"))

        with pytest.raises(PriceUnavailableError):
            rm.refresh_marks()
        assert rm.position("AAPL").price == D("100")


def test_buying_power_is_monotonic_in_cash(pdt_manager) -> None:
    pdt_manager.update_holdings("AAPL", D("10"), D("50"))
    intent = limit("AAPL", 3, "100")

    pdt_manager.update_cash(D("-300"))
    assert isinstance(pdt_manager.risk_check(intent), Denied)
    pdt_manager.update_cash(D("0"))
    assert isinstance(pdt_manager.risk_check(intent), Granted)
    pdt_manager.update_cash(D("5000"))
    assert isinstance(pdt_manager.risk_check(intent), Granted)
