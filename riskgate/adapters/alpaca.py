"""Alpaca REST account source.

Hydrates the portfolio from the Alpaca trading API:
    - GET {base_url}/v2/account
    - GET {base_url}/v2/positions

Monetary fields arrive as JSON strings and are parsed straight into Decimal.
Any transport, status or payload problem raises HydrationError.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import requests

from riskgate.config.configs import AlpacaConfig
from riskgate.errors.errors import HydrationError
from riskgate.types.types import AccountInfo, BrokerPosition

_LOGGER = logging.getLogger(__name__)

_SOURCE = "alpaca"


class AlpacaAccountSource:
    def __init__(
        self,
        cfg: AlpacaConfig,
        *,
        key_id: Optional[str] = None,
        secret_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        key = key_id or cfg.key_id
        secret = secret_key or cfg.secret_key
        if not key or not secret:
            raise HydrationError(
                "Alpaca credentials missing (key_id/secret_key)",
                source=_SOURCE,
                component="adapters.alpaca",
            )
        self._base_url = cfg.base_url.rstrip("/")
        self._timeout = cfg.timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "APCA-API-KEY-ID": key,
                "APCA-API-SECRET-KEY": secret,
            }
        )

    # --- AccountSource ---

    def get_account(self) -> AccountInfo:
        body = self._get_json("/v2/account")
        if not isinstance(body, dict):
            raise HydrationError(
                "Account payload is not a JSON object",
                source=_SOURCE,
                component="adapters.alpaca",
            )
        return AccountInfo(
            cash=self._decimal(body, "cash"),
            pattern_day_trader=bool(body.get("pattern_day_trader", False)),
            last_equity=self._optional_decimal(body, "last_equity"),
            last_maintenance_margin=self._optional_decimal(body, "last_maintenance_margin"),
        )

    def get_positions(self) -> list[BrokerPosition]:
        body = self._get_json("/v2/positions")
        if not isinstance(body, list):
            raise HydrationError(
                "Positions payload is not a JSON array",
                source=_SOURCE,
                component="adapters.alpaca",
            )
        positions: list[BrokerPosition] = []
        for raw in body:
            if not isinstance(raw, dict) or "symbol" not in raw:
                raise HydrationError(
                    "Position entry without symbol",
                    source=_SOURCE,
                    component="adapters.alpaca",
                    details={"entry": repr(raw)[:200]},
                )
            positions.append(
                BrokerPosition(
                    ticker=str(raw["symbol"]),
                    quantity=self._decimal(raw, "qty"),
                    average_price=self._decimal(raw, "avg_entry_price"),
                )
            )
        return positions

    # --- helpers ---

    def _get_json(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            _LOGGER.error(
                "alpaca_request_failed",
                extra={"event": "alpaca_request_failed", "url": url, "error": repr(exc)},
            )
            raise HydrationError(
                f"Alpaca request failed: {type(exc).__name__}",
                source=_SOURCE,
                component="adapters.alpaca",
                details={"url": url},
            ) from exc

        if response.status_code != 200:
            _LOGGER.error(
                "alpaca_bad_status",
                extra={"event": "alpaca_bad_status", "url": url, "status": response.status_code},
            )
            raise HydrationError(
                f"Alpaca returned HTTP {response.status_code}",
                source=_SOURCE,
                component="adapters.alpaca",
                details={"url": url, "status": response.status_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise HydrationError(
                "Alpaca returned a non-JSON body",
                source=_SOURCE,
                component="adapters.alpaca",
                details={"url": url},
            ) from exc

    @staticmethod
    def _decimal(raw: dict[str, Any], key: str) -> Decimal:
        value = AlpacaAccountSource._optional_decimal(raw, key)
        if value is None:
            raise HydrationError(
                f"Missing field '{key}'", source=_SOURCE, component="adapters.alpaca"
            )
        return value

    @staticmethod
    def _optional_decimal(raw: dict[str, Any], key: str) -> Optional[Decimal]:
        value = raw.get(key)
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise HydrationError(
                f"Field '{key}' is not a decimal: {value!r}",
                source=_SOURCE,
                component="adapters.alpaca",
            ) from exc
