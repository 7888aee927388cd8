"""
Exception hierarchy for the Vietnam connector.

Every failure surfaced by the connector derives from ConnectorError so callers
can catch the whole family in one place, while still being able to tell a
local validation rejection (OrderRejected) from an upstream problem
(BrokerError / DecodeError / TransportError).

RULES:
- Local validation errors are raised BEFORE any network call
- Upstream messages are carried verbatim for diagnostics
- CapabilityNotImplemented is also a builtin NotImplementedError
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class ConnectorError(Exception):
    """Base class for all connector errors."""

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


# ============================================================================
# AUTHENTICATION
# ============================================================================

class AuthError(ConnectorError):
    """Credential acquisition failed."""
    pass


class CredentialsMissing(AuthError):
    """Consumer id / secret not configured."""
    pass


class AuthFailed(AuthError):
    """Auth endpoint reported a non-success code."""
    pass


class InvalidCredentialResponse(AuthError):
    """Auth endpoint succeeded but returned no token."""
    pass


# ============================================================================
# UPSTREAM / TRANSPORT
# ============================================================================

class TransportError(ConnectorError):
    """HTTP layer failure (connection, timeout, non-2xx after retries)."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[Any] = None):
        super().__init__(message, detail)
        self.status_code = status_code


class DecodeError(ConnectorError):
    """Response body is not a JSON object / envelope."""
    pass


class BrokerError(ConnectorError):
    """Upstream reported a non-success status."""

    def __init__(self, message: str, status: Any = None, detail: Optional[Any] = None):
        super().__init__(message, detail)
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (status={self.status})"


# ============================================================================
# MARKETS / DATA
# ============================================================================

class SymbolNotFound(ConnectorError):
    """No instrument matches the requested symbol."""
    pass


class AmbiguousSymbol(ConnectorError):
    """Bare ticker listed on more than one segment."""

    def __init__(self, message: str, candidates: Sequence[str] = ()):
        super().__init__(message, detail=list(candidates))
        self.candidates = tuple(candidates)


class InvalidTimeframe(ConnectorError):
    """Timeframe has no upstream resolution code."""
    pass


# ============================================================================
# ORDER VALIDATION
# ============================================================================

class OrderRejected(ConnectorError):
    """Order failed local pre-trade validation."""
    pass


class MarketClosed(OrderRejected):
    """Session does not accept orders."""
    pass


class OrderTypeNotAllowed(OrderRejected):
    """Concrete order type not accepted in the current session."""
    pass


class InvalidQuantity(OrderRejected):
    """Quantity is not a positive multiple of the lot size."""
    pass


class InvalidPrice(OrderRejected):
    """Limit price missing or non-positive."""
    pass


class PriceOutOfBand(OrderRejected):
    """Limit price outside the daily floor/ceiling band."""

    def __init__(self, message: str, floor: Any = None, ceiling: Any = None):
        super().__init__(message, detail={"floor": floor, "ceiling": ceiling})
        self.floor = floor
        self.ceiling = ceiling


class InvalidOrderParams(ConnectorError):
    """Required order parameter (e.g. account number) missing."""
    pass


# ============================================================================
# CAPABILITIES / CONSTRUCTION
# ============================================================================

class CapabilityNotImplemented(ConnectorError, NotImplementedError):
    """Capability exists on the interface but this connector does not provide it."""

    def __init__(self, capability: str):
        super().__init__(f"{capability} is not implemented for this exchange")
        self.capability = capability


class ConnectorConstructionError(ConnectorError):
    """Connector could not be constructed from the supplied options."""
    pass


class UnknownExchange(ConnectorConstructionError):
    """No connector registered for the requested exchange id."""
    pass
