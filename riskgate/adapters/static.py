"""In-memory and absent capability adapters."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Optional

from riskgate.errors.errors import PriceUnavailableError, UnsupportedOperationError
from riskgate.types.types import AccountInfo, BrokerPosition


class StaticAccountSource:
    """Serves a fixed account and position list. Backs `account.kind = "static"`."""

    def __init__(
        self, account: AccountInfo, positions: Optional[Iterable[BrokerPosition]] = None
    ) -> None:
        self._account = account
        self._positions = list(positions or [])

    def get_account(self) -> AccountInfo:
        return self._account

    def get_positions(self) -> list[BrokerPosition]:
        return list(self._positions)


class StaticPriceSource:
    def __init__(self, prices: Optional[Mapping[str, Decimal]] = None) -> None:
        self._prices: dict[str, Decimal] = dict(prices or {})

    def set_price(self, ticker: str, price: Decimal) -> None:
        self._prices[ticker] = price

    def get_latest_price(self, ticker: str) -> Decimal:
        try:
            return self._prices[ticker]
        except KeyError as exc:
            raise PriceUnavailableError(
                "No price for ticker", ticker=ticker, component="adapters.static"
            ) from exc


class UnsupportedAccountSource:
    def get_account(self) -> AccountInfo:
        raise UnsupportedOperationError(
            "No account source configured", capability="account_source"
        )

    def get_positions(self) -> list[BrokerPosition]:
        raise UnsupportedOperationError(
            "No account source configured", capability="account_source"
        )


class UnsupportedPriceSource:
    def get_latest_price(self, ticker: str) -> Decimal:
        raise UnsupportedOperationError(
            "No price source configured; market orders cannot be priced",
            capability="price_source",
            details={"ticker": ticker},
        )
