"""
Exceptions for the risk engine.

Exception hierarchy:
- RiskGateError (base)
  - Input errors (malformed request; fatal to a single check, never a Denied decision)
    - UnsupportedOrderTypeError: order type the risk check cannot price
    - QuantityConversionError: quantity not representable as an exact Decimal
    - MessageParseError: invalid/malformed inbound message
  - Dependency errors
    - HydrationError: account source failed at startup (fatal)
    - PriceUnavailableError: live price lookup failed (fatal to a single check)
    - UnsupportedOperationError: capability absent by construction
  - ConfigurationError: invalid configuration
  - BusError: error in connection with the bus
"""

from __future__ import annotations

from typing import Any, Optional


class RiskGateError(Exception):
    """Base exception for all risk engine errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


# --- Input ---


class InputError(RiskGateError):
    """A malformed request. Not a risk decision."""


class UnsupportedOrderTypeError(InputError):
    """Raised when an opening trade carries an order type other than market or limit."""

    def __init__(
        self,
        message: str,
        *,
        order_type: Optional[str] = None,
        intent_id: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.order_type = order_type
        self.intent_id = intent_id
        details = details or {}
        if order_type:
            details["order_type"] = order_type
        if intent_id:
            details["intent_id"] = intent_id
        super().__init__(message, component=component, details=details)


class QuantityConversionError(InputError):
    """Raised when a quantity cannot be represented exactly in the decimal domain."""

    def __init__(
        self,
        message: str,
        *,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.value = value
        details = details or {}
        if value is not None:
            details["value"] = repr(value)
        super().__init__(message, component=component, details=details)


class MessageParseError(InputError):
    """Raised when a message cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        # Don't include raw_data in details to avoid log spam
        super().__init__(message, component=component, details=details)


# --- Dependencies ---


class DependencyError(RiskGateError):
    """An external collaborator failed."""


class HydrationError(DependencyError):
    """Raised when the account source cannot seed the portfolio."""

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.source = source
        details = details or {}
        if source:
            details["source"] = source
        super().__init__(message, component=component, details=details)


class PriceUnavailableError(DependencyError):
    """Raised when the live price for a ticker cannot be obtained."""

    def __init__(
        self,
        message: str,
        *,
        ticker: Optional[str] = None,
        url: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.ticker = ticker
        self.url = url
        details = details or {}
        if ticker:
            details["ticker"] = ticker
        if url:
            details["url"] = url
        super().__init__(message, component=component, details=details)


class UnsupportedOperationError(DependencyError):
    """Raised when a capability was not provided at construction time."""

    def __init__(
        self,
        message: str,
        *,
        capability: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.capability = capability
        details = details or {}
        if capability:
            details["capability"] = capability
        super().__init__(message, component=component, details=details)


# --- Infrastructure ---


class ConfigurationError(RiskGateError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


class BusError(RiskGateError):
    "Error in connection with the bus"
