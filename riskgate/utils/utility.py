import datetime
import uuid
from dataclasses import asdict, is_dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from riskgate.errors.errors import QuantityConversionError

# Largest quantity a trade intent may carry (signed 64-bit, as on the wire).
MAX_QTY = 2**63 - 1


# --- Decimals ---


def to_quantity(qty: Any) -> Decimal:
    """
    Convert a trade quantity into an exact Decimal.
    Raises QuantityConversionError for non-integral, non-finite or out-of-range values.
    """
    if isinstance(qty, bool):
        raise QuantityConversionError("Quantity must be an integer, got bool", value=qty)
    try:
        if isinstance(qty, Decimal):
            q = qty
        elif isinstance(qty, (int, str)):
            q = Decimal(qty)
        elif isinstance(qty, float):
            q = Decimal(str(qty))
        else:
            raise QuantityConversionError(
                f"Quantity of type {type(qty).__name__} is not supported", value=qty
            )
    except (InvalidOperation, ValueError) as exc:
        raise QuantityConversionError("Failed to convert quantity to Decimal", value=qty) from exc

    if not q.is_finite():
        raise QuantityConversionError("Quantity must be finite", value=qty)
    if q != q.to_integral_value():
        raise QuantityConversionError("Quantity must be integral", value=qty)
    if abs(q) > MAX_QTY:
        raise QuantityConversionError("Quantity magnitude out of range", value=qty)
    return q


def signum(x: Decimal) -> int:
    if x > 0:
        return 1
    if x < 0:
        return -1
    return 0


# --- Sanitization Helper ---


def make_serializable(obj: Any) -> Any:
    """
    Recursively converts non-JSON-safe objects (Decimal, datetime, UUID, Dataclass)
    into standard Python primitives (str, dict, list).
    """
    # Fast path for primitives
    if isinstance(obj, (str, int, float, bool, type(None))):
        return obj

    if isinstance(obj, dict):
        return {k: make_serializable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [make_serializable(x) for x in obj]

    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return make_serializable(asdict(obj))
    return str(obj)


# --- Config helpers ---


def deep_merge(a: Mapping[str, Any], b: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], Mapping) and isinstance(v, Mapping):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def insert_path(tree: Dict[str, Any], dotted_path: str, value: Any, sep: str = ".") -> None:
    """Populate ``tree`` with ``value`` located at ``dotted_path``."""

    segments = [segment.strip() for segment in dotted_path.split(sep) if segment.strip()]
    if not segments:
        raise ValueError("Override keys must contain at least one non-empty segment")

    cursor: Dict[str, Any] = tree
    for segment in segments[:-1]:
        existing = cursor.get(segment)
        if existing is None:
            next_node: Dict[str, Any] = {}
            cursor[segment] = next_node
            cursor = next_node
        elif isinstance(existing, dict):
            cursor = existing
        else:
            raise ValueError(
                f"Cannot override nested path '{dotted_path}': segment '{segment}' is already a value"
            )

    leaf = segments[-1]
    if isinstance(cursor.get(leaf), dict):
        raise ValueError(
            f"Cannot assign value to '{dotted_path}': existing node at '{leaf}' is a mapping"
        )
    cursor[leaf] = value


def validation_error_parser(error: ValidationError) -> list[dict[str, str]]:
    parsed_error = [
        {
            "component": "config.schema",
            "path": ".".join(map(str, err["loc"])),
            "message": err["msg"],
            "error_type": err["type"],
        }
        for err in error.errors()
    ]
    return parsed_error
