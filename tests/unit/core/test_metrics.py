from decimal import Decimal

import pytest

from riskgate.core import metrics
from riskgate.core.portfolio import Portfolio
from riskgate.types.types import AccountSnapshot, Position

D = Decimal


class TestRealisticPortfolio:
    """Eight-ticker book of a pattern day trader, cash reconciled after the fills."""

    @pytest.fixture
    def rm(self, manager_factory):
        rm = manager_factory(pdt=True, last_equity="997914.48", last_maintenance_margin="0")
        fills = [
            ("TRP", "5118", "48.69"),
            ("MPLX", "8825", "28.12"),
            ("E", "19539", "25.56"),
            ("DVN", "-8146", "30.58"),
            ("CVE", "-27716", "9.10"),
            ("COP", "-4005", "62.43"),
            ("BKR", "10527", "23.68"),
            ("APA", "-24754", "20.33"),
        ]
        for ticker, shares, price in fills:
            rm.update_holdings(ticker, D(shares), D(price))
        rm.update_cash(D("992832.98"))
        return rm

    def test_exposures(self, rm) -> None:
        assert rm.long_market_exposure() == D("1246050.62")
        assert rm.short_market_exposure() == D("1254601.25")
        assert rm.gross_market_exposure() == D("2500651.87")
        assert rm.net_market_exposure() == D("-8550.63")

    def test_equity_and_margins(self, rm) -> None:
        assert rm.equity() == D("984282.35")
        assert rm.initial_margin() == D("1250325.935")
        assert rm.maintenance_margin() == D("750195.561")
        assert rm.multiplier() == D("4")

    def test_buying_power(self, rm) -> None:
        assert rm.regt_buying_power() == D("0")
        assert rm.daytrading_buying_power() == D("1491006.05")
        assert rm.buying_power() == D("1491006.05")

    def test_compute_metrics_matches_accessors(self, rm) -> None:
        m = rm.metrics()
        assert m.equity == rm.equity()
        assert m.gross_exposure == m.long_exposure + m.short_exposure
        assert m.equity == m.net_exposure + m.cash
        assert [p.ticker for p in m.positions] == sorted(
            ["TRP", "MPLX", "E", "DVN", "CVE", "COP", "BKR", "APA"]
        )


class TestIncrementalEquity:
    def test_sequence(self, pdt_manager) -> None:
        rm = pdt_manager

        rm.update_holdings("AAPL", D("1"), D("100"))
        rm.update_cash(D("300"))
        assert rm.long_market_exposure() == D("100")
        assert rm.short_market_exposure() == D("0")
        assert rm.gross_market_exposure() == D("100")
        assert rm.net_market_exposure() == D("100")
        assert rm.equity() == D("400")
        assert rm.initial_margin() == D("50")
        assert rm.maintenance_margin() == D("30")
        assert rm.regt_buying_power() == D("700")
        assert rm.daytrading_buying_power() == D("0")
        assert rm.buying_power() == D("700")

        rm.update_holdings("TSLA", D("-2"), D("80"))
        assert rm.long_market_exposure() == D("100")
        assert rm.short_market_exposure() == D("160")
        assert rm.gross_market_exposure() == D("260")
        assert rm.net_market_exposure() == D("-60")
        assert rm.equity() == D("400")
        assert rm.initial_margin() == D("130")
        assert rm.maintenance_margin() == D("78")
        assert rm.regt_buying_power() == D("540")
        assert rm.buying_power() == D("540")

        rm.update_holdings("TSLA", D("-1"), D("100"))
        assert rm.short_market_exposure() == D("300")
        assert rm.gross_market_exposure() == D("400")
        assert rm.net_market_exposure() == D("-200")
        assert rm.equity() == D("360")
        assert rm.initial_margin() == D("200")
        assert rm.maintenance_margin() == D("120")
        assert rm.regt_buying_power() == D("320")

        rm.update_holdings("TSLA", D("3"), D("90"))
        assert rm.long_market_exposure() == D("100")
        assert rm.short_market_exposure() == D("0")
        assert rm.gross_market_exposure() == D("100")
        assert rm.net_market_exposure() == D("100")
        assert rm.equity() == D("390")
        assert rm.initial_margin() == D("50")
        assert rm.maintenance_margin() == D("30")
        assert rm.regt_buying_power() == D("680")


class TestMaintenanceRates:
    @pytest.mark.parametrize(
        "shares,price,rate",
        [
            ("10", "2.50", "0.3"),
            ("10", "2.49", "1.0"),
            ("-10", "5.00", "0.3"),
            ("-10", "4.99", "1.0"),
            ("-10", "3.00", "1.0"),
            ("0", "1.00", "1.0"),
        ],
    )
    def test_thresholds(self, shares, price, rate) -> None:
        assert metrics.maintenance_rate(D(shares), D(price)) == D(rate)

    def test_low_priced_short_is_fully_margined(self) -> None:
        positions = [Position("PENNY", D("-100"), D("4"))]
        assert metrics.maintenance_margin(positions) == D("400")


class TestMultiplier:
    @pytest.mark.parametrize(
        "equity,expected",
        [("1999.99", "1"), ("2000", "2"), ("24999.99", "2"), ("25000", "4"), ("1000000", "4")],
    )
    def test_pattern_day_trader(self, equity, expected) -> None:
        assert metrics.multiplier(True, D(equity)) == D(expected)

    @pytest.mark.parametrize(
        "equity,expected", [("0", "1"), ("25000", "1"), ("25000.01", "2")]
    )
    def test_non_pattern_day_trader(self, equity, expected) -> None:
        assert metrics.multiplier(False, D(equity)) == D(expected)


class TestBuyingPowerFallbacks:
    def test_regt_is_floored_at_zero(self) -> None:
        assert metrics.regt_buying_power(D("100"), D("500")) == D("0")

    def test_missing_prior_day_falls_back_to_regt(self) -> None:
        pf = Portfolio(cash=D("300"), snapshot=AccountSnapshot(is_pattern_day_trader=True))
        pf.apply_fill("AAPL", D("1"), D("100"))

        m = metrics.compute_metrics(pf)
        assert m.daytrading_buying_power is None
        assert m.buying_power == m.regt_buying_power

    def test_daytrading_disabled_by_config(self) -> None:
        snapshot = AccountSnapshot(
            is_pattern_day_trader=True,
            last_equity=D("1000000"),
            last_maintenance_margin=D("0"),
        )
        pf = Portfolio(cash=D("300"), snapshot=snapshot)

        assert metrics.compute_metrics(pf).buying_power == D("1000000")
        disabled = metrics.compute_metrics(pf, daytrading_enabled=False)
        assert disabled.daytrading_buying_power is None
        assert disabled.buying_power == D("600")


def test_identities_hold_across_fills() -> None:
    pf = Portfolio(cash=D("1000"))
    fills = [
        ("A", "10", "12.5"),
        ("B", "-4", "30"),
        ("A", "-15", "13"),
        ("C", "7", "1.25"),
        ("B", "4", "29"),
    ]
    for ticker, shares, price in fills:
        pf.apply_fill(ticker, D(shares), D(price))
        positions = list(pf.iter_positions())
        gross = metrics.gross_exposure(positions)
        assert gross == metrics.long_exposure(positions) + metrics.short_exposure(positions)
        assert metrics.equity(pf) == metrics.net_exposure(positions) + pf.cash
