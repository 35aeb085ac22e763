"""
JSON wire codec.

Inbound events are an untagged union, told apart by their fields:
    - Lot:          {id, order_id, ticker, fill_time, price, shares}
    - TradeIntent:  {id, ticker, qty, order_type, strategy?, time_in_force?}
    - MarketStatus: {is_open, next_open, next_close}

order_type is "market" or an externally tagged object:
    {"limit": {"limit_price": "100"}}, {"stop": {"stop_price": ..}},
    {"stop_limit": {"stop_price": .., "limit_price": ..}}

Outbound decisions are tagged by "result":
    {"result": "granted", "intent": {...}}
    {"result": "denied", "intent": {...}, "reason": "change_in_position_side"}
    {"result": "denied", "intent": {...},
     "reason": {"insufficient_buying_power": {"buying_power": "220"}}}

Decimals are written as strings; JSON numbers are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

import orjson

from riskgate.errors.errors import InputError, MessageParseError
from riskgate.types.types import (
    ChangeInPositionSide,
    DecisionResult,
    Denied,
    DenyReason,
    Granted,
    InsufficientBuyingPower,
    Input,
    LimitOrder,
    Lot,
    MarketOrder,
    MarketStatus,
    OrderKind,
    OrderType,
    RiskCheckResponse,
    StopLimitOrder,
    StopOrder,
    TimeInForce,
    TradeIntent,
)
from riskgate.utils.utility import to_quantity

_LOT_FIELDS = frozenset({"order_id", "fill_time", "price", "shares"})
_REASON_CHANGE_SIDE = "change_in_position_side"
_REASON_INSUFFICIENT_BP = "insufficient_buying_power"

RawMessage = Union[bytes, bytearray, str]


# --- primitives ---


def _loads(raw: RawMessage, expected: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise MessageParseError(
            f"Invalid JSON: {exc}",
            raw_data=raw if isinstance(raw, str) else bytes(raw).decode("utf-8", "replace"),
            expected_type=expected,
            component="codec",
        ) from exc


def _decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise MessageParseError(
            f"Field '{field_name}' must be a decimal number or string, got {value!r}",
            component="codec",
        )
    try:
        out = Decimal(str(value))
    except InvalidOperation as exc:
        raise MessageParseError(
            f"Field '{field_name}' is not a decimal: {value!r}", component="codec"
        ) from exc
    if not out.is_finite():
        raise MessageParseError(f"Field '{field_name}' must be finite", component="codec")
    return out


def _datetime(value: Any, field_name: str) -> datetime:
    if not isinstance(value, str):
        raise MessageParseError(
            f"Field '{field_name}' must be an ISO-8601 string", component="codec"
        )
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as exc:
        raise MessageParseError(
            f"Field '{field_name}' is not ISO-8601: {value!r}", component="codec"
        ) from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_datetime(value: Any, field_name: str) -> Optional[datetime]:
    return None if value is None else _datetime(value, field_name)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return None if dt is None else dt.isoformat()


def _require(obj: dict[str, Any], key: str, expected: str) -> Any:
    try:
        return obj[key]
    except KeyError as exc:
        raise MessageParseError(
            f"Missing field '{key}'", expected_type=expected, component="codec"
        ) from exc


# --- order types ---


def order_type_to_wire(order_type: OrderType) -> Any:
    if isinstance(order_type, MarketOrder):
        return OrderKind.MARKET.value
    if isinstance(order_type, LimitOrder):
        return {OrderKind.LIMIT.value: {"limit_price": str(order_type.limit_price)}}
    if isinstance(order_type, StopOrder):
        return {OrderKind.STOP.value: {"stop_price": str(order_type.stop_price)}}
    if isinstance(order_type, StopLimitOrder):
        return {
            OrderKind.STOP_LIMIT.value: {
                "stop_price": str(order_type.stop_price),
                "limit_price": str(order_type.limit_price),
            }
        }
    raise TypeError(f"Unknown order type {type(order_type).__name__}")


def order_type_from_wire(value: Any) -> OrderType:
    if isinstance(value, str):
        if value == OrderKind.MARKET.value:
            return MarketOrder()
        raise MessageParseError(f"Unknown order type {value!r}", component="codec")
    if not isinstance(value, dict) or len(value) != 1:
        raise MessageParseError(
            f"order_type must be 'market' or a single-key object, got {value!r}",
            component="codec",
        )
    kind, params = next(iter(value.items()))
    if not isinstance(params, dict):
        raise MessageParseError(f"order_type '{kind}' needs an object body", component="codec")
    try:
        if kind == OrderKind.MARKET.value:
            return MarketOrder()
        if kind == OrderKind.LIMIT.value:
            return LimitOrder(_decimal(_require(params, "limit_price", kind), "limit_price"))
        if kind == OrderKind.STOP.value:
            return StopOrder(_decimal(_require(params, "stop_price", kind), "stop_price"))
        if kind == OrderKind.STOP_LIMIT.value:
            return StopLimitOrder(
                stop_price=_decimal(_require(params, "stop_price", kind), "stop_price"),
                limit_price=_decimal(_require(params, "limit_price", kind), "limit_price"),
            )
    except ValueError as exc:
        raise MessageParseError(str(exc), expected_type=kind, component="codec") from exc
    raise MessageParseError(f"Unknown order type {kind!r}", component="codec")


# --- trade intent ---


def intent_to_dict(intent: TradeIntent) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": intent.id,
        "ticker": intent.ticker,
        "qty": intent.qty,
        "order_type": order_type_to_wire(intent.order_type),
        "time_in_force": intent.time_in_force.value,
    }
    if intent.strategy is not None:
        out["strategy"] = intent.strategy
    return out


def intent_from_dict(obj: dict[str, Any]) -> TradeIntent:
    expected = "TradeIntent"
    qty = to_quantity(_require(obj, "qty", expected))
    try:
        tif = TimeInForce(obj.get("time_in_force", TimeInForce.DAY.value))
    except ValueError as exc:
        raise MessageParseError(str(exc), expected_type=expected, component="codec") from exc
    kwargs: dict[str, Any] = {
        "ticker": _require(obj, "ticker", expected),
        "qty": int(qty),
        "order_type": order_type_from_wire(obj.get("order_type", OrderKind.MARKET.value)),
        "strategy": obj.get("strategy"),
        "time_in_force": tif,
    }
    if "id" in obj:
        kwargs["id"] = obj["id"]
    try:
        return TradeIntent(**kwargs)
    except ValueError as exc:
        raise MessageParseError(str(exc), expected_type=expected, component="codec") from exc


# --- lot ---


def lot_to_dict(lot: Lot) -> dict[str, Any]:
    return {
        "id": lot.id,
        "order_id": lot.order_id,
        "ticker": lot.ticker,
        "fill_time": lot.fill_time.isoformat(),
        "price": str(lot.price),
        "shares": str(lot.shares),
    }


def lot_from_dict(obj: dict[str, Any]) -> Lot:
    expected = "Lot"
    return Lot(
        id=str(_require(obj, "id", expected)),
        order_id=str(_require(obj, "order_id", expected)),
        ticker=str(_require(obj, "ticker", expected)),
        fill_time=_datetime(_require(obj, "fill_time", expected), "fill_time"),
        price=_decimal(_require(obj, "price", expected), "price"),
        shares=_decimal(_require(obj, "shares", expected), "shares"),
    )


# --- market status ---


def market_status_to_dict(status: MarketStatus) -> dict[str, Any]:
    return {
        "is_open": status.is_open,
        "next_open": _iso(status.next_open),
        "next_close": _iso(status.next_close),
    }


def market_status_from_dict(obj: dict[str, Any]) -> MarketStatus:
    is_open = _require(obj, "is_open", "MarketStatus")
    if not isinstance(is_open, bool):
        raise MessageParseError("Field 'is_open' must be a boolean", component="codec")
    return MarketStatus(
        is_open=is_open,
        next_open=_optional_datetime(obj.get("next_open"), "next_open"),
        next_close=_optional_datetime(obj.get("next_close"), "next_close"),
    )


# --- inbound union ---


def input_from_dict(obj: Any) -> Input:
    if not isinstance(obj, dict):
        raise MessageParseError("Message must be a JSON object", component="codec")
    if "is_open" in obj:
        return market_status_from_dict(obj)
    if _LOT_FIELDS <= obj.keys():
        return lot_from_dict(obj)
    if "qty" in obj:
        return intent_from_dict(obj)
    raise MessageParseError(
        f"Message matches no known event shape (keys={sorted(obj)})",
        expected_type="Lot | TradeIntent | MarketStatus",
        component="codec",
    )


def parse_input(raw: RawMessage) -> Input:
    """
    Decode one inbound message. Raises InputError subclasses (MessageParseError,
    QuantityConversionError) for anything that is not a well-formed event.
    """
    obj = _loads(raw, "Lot | TradeIntent | MarketStatus")
    try:
        return input_from_dict(obj)
    except InputError:
        raise
    except (TypeError, ValueError) as exc:
        raise MessageParseError(str(exc), component="codec") from exc


def encode_input(event: Input) -> bytes:
    if isinstance(event, Lot):
        return orjson.dumps(lot_to_dict(event))
    if isinstance(event, TradeIntent):
        return orjson.dumps(intent_to_dict(event))
    if isinstance(event, MarketStatus):
        return orjson.dumps(market_status_to_dict(event))
    raise TypeError(f"Cannot encode {type(event).__name__}")


# --- decisions ---


def reason_to_wire(reason: DenyReason) -> Any:
    if isinstance(reason, ChangeInPositionSide):
        return _REASON_CHANGE_SIDE
    if isinstance(reason, InsufficientBuyingPower):
        return {_REASON_INSUFFICIENT_BP: {"buying_power": str(reason.buying_power)}}
    raise TypeError(f"Unknown deny reason {type(reason).__name__}")


def reason_from_wire(value: Any) -> DenyReason:
    if value == _REASON_CHANGE_SIDE:
        return ChangeInPositionSide()
    if isinstance(value, dict) and set(value) == {_REASON_INSUFFICIENT_BP}:
        body = value[_REASON_INSUFFICIENT_BP]
        if isinstance(body, dict):
            return InsufficientBuyingPower(
                _decimal(_require(body, "buying_power", "DenyReason"), "buying_power")
            )
    raise MessageParseError(f"Unknown deny reason {value!r}", component="codec")


def decision_to_dict(decision: RiskCheckResponse) -> dict[str, Any]:
    out: dict[str, Any] = {
        "result": decision.result.value,
        "intent": intent_to_dict(decision.intent),
    }
    if isinstance(decision, Denied):
        out["reason"] = reason_to_wire(decision.reason)
    return out


def decision_from_dict(obj: Any) -> RiskCheckResponse:
    if not isinstance(obj, dict):
        raise MessageParseError("Decision must be a JSON object", component="codec")
    expected = "RiskCheckResponse"
    result = _require(obj, "result", expected)
    intent_obj = _require(obj, "intent", expected)
    if not isinstance(intent_obj, dict):
        raise MessageParseError("Decision intent must be an object", component="codec")
    intent = intent_from_dict(intent_obj)
    if result == DecisionResult.GRANTED.value:
        return Granted(intent)
    if result == DecisionResult.DENIED.value:
        return Denied(intent, reason_from_wire(_require(obj, "reason", expected)))
    raise MessageParseError(f"Unknown result {result!r}", component="codec")


def encode_decision(decision: RiskCheckResponse) -> bytes:
    return orjson.dumps(decision_to_dict(decision))


def decode_decision(raw: RawMessage) -> RiskCheckResponse:
    return decision_from_dict(_loads(raw, "RiskCheckResponse"))
