"""HTTP price datastore source.

GET {datastore_url}/last/{ticker} returns the latest trade price as a JSON number or
string. A missing ticker, an unreachable datastore or a malformed body raises
PriceUnavailableError; no default price is ever substituted.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import requests

from riskgate.config.configs import PriceSourceConfig
from riskgate.errors.errors import PriceUnavailableError

_LOGGER = logging.getLogger(__name__)


class HttpPriceSource:
    def __init__(self, cfg: PriceSourceConfig, session: Optional[requests.Session] = None) -> None:
        self._base_url = cfg.datastore_url.rstrip("/")
        self._timeout = cfg.timeout
        self._session = session or requests.Session()

    def get_latest_price(self, ticker: str) -> Decimal:
        url = f"{self._base_url}/last/{ticker}"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            _LOGGER.warning(
                "price_request_failed",
                extra={"event": "price_request_failed", "ticker": ticker, "error": repr(exc)},
            )
            raise PriceUnavailableError(
                f"Price datastore unreachable: {type(exc).__name__}",
                ticker=ticker,
                url=url,
                component="adapters.price_http",
            ) from exc

        if response.status_code == 404:
            raise PriceUnavailableError(
                "No price for ticker", ticker=ticker, url=url, component="adapters.price_http"
            )
        if response.status_code != 200:
            raise PriceUnavailableError(
                f"Price datastore returned HTTP {response.status_code}",
                ticker=ticker,
                url=url,
                component="adapters.price_http",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise PriceUnavailableError(
                "Price body is not JSON", ticker=ticker, url=url, component="adapters.price_http"
            ) from exc
        return self._parse_price(body, ticker=ticker, url=url)

    @staticmethod
    def _parse_price(body: Any, *, ticker: str, url: str) -> Decimal:
        if body is None or isinstance(body, bool) or not isinstance(body, (int, float, str)):
            raise PriceUnavailableError(
                f"Malformed price body: {body!r}",
                ticker=ticker,
                url=url,
                component="adapters.price_http",
            )
        try:
            price = Decimal(str(body))
        except InvalidOperation as exc:
            raise PriceUnavailableError(
                f"Malformed price body: {body!r}",
                ticker=ticker,
                url=url,
                component="adapters.price_http",
            ) from exc
        if not price.is_finite() or price <= 0:
            raise PriceUnavailableError(
                f"Non-positive price: {price}",
                ticker=ticker,
                url=url,
                component="adapters.price_http",
            )
        return price
