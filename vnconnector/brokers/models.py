"""
Canonical records returned by the connector.

All prices and money amounts are Decimal. ``info`` keeps the raw upstream
record for callers that need fields the canonical shape does not carry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from vnconnector.config import SsiOrderType


# ============================================================================
# ENUMS
# ============================================================================

class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    """Canonical order states."""
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


OPEN_STATUSES = frozenset({OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED})

_STATUS_MAP = {
    "NEW": OrderStatus.OPEN,
    "PENDING": OrderStatus.OPEN,
    "PENDING_NEW": OrderStatus.OPEN,
    "OPEN": OrderStatus.OPEN,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "PARTIALLYFILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELLED": OrderStatus.CANCELED,
    "CANCELED": OrderStatus.CANCELED,
    "REJECTED": OrderStatus.REJECTED,
    "EXPIRED": OrderStatus.EXPIRED,
}


def map_order_status(raw: Any) -> OrderStatus:
    """Upstream status text -> OrderStatus (UNKNOWN when unrecognised)."""
    key = str(raw or "").strip().upper().replace(" ", "_")
    return _STATUS_MAP.get(key, OrderStatus.UNKNOWN)


def canonical_order_type(ssi_type: Any) -> str:
    """LO -> "limit"; every other SSI type executes at market."""
    text = str(ssi_type or "").strip().upper()
    if text == SsiOrderType.LO.value:
        return "limit"
    if text in {t.value for t in SsiOrderType}:
        return "market"
    return text.lower()


# ============================================================================
# MARKET DATA
# ============================================================================

@dataclass(frozen=True)
class Ticker:
    symbol: str
    timestamp_ms: Optional[int]
    open: Optional[Decimal]
    high: Optional[Decimal]
    low: Optional[Decimal]
    close: Optional[Decimal]
    previous_close: Optional[Decimal]
    change: Optional[Decimal]
    percentage: Optional[Decimal]
    base_volume: Optional[Decimal]
    quote_volume: Optional[Decimal]
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False, repr=False)

    @property
    def last(self) -> Optional[Decimal]:
        return self.close


# ============================================================================
# ORDERS
# ============================================================================

@dataclass(frozen=True)
class Order:
    id: str
    client_order_id: Optional[str]
    symbol: str
    type: str
    side: Optional[OrderSide]
    price: Optional[Decimal]
    amount: Decimal
    filled: Decimal
    remaining: Decimal
    cost: Decimal
    average: Optional[Decimal]
    status: OrderStatus
    timestamp_ms: Optional[int] = None
    last_update_ms: Optional[int] = None
    ssi_type: Optional[str] = None
    account_no: Optional[str] = None
    message: Optional[str] = None
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


# ============================================================================
# ACCOUNT
# ============================================================================

@dataclass(frozen=True)
class Asset:
    free: Decimal
    used: Decimal
    total: Decimal


@dataclass(frozen=True)
class Balances:
    """Per-currency balances (one VND entry for a cash account)."""
    assets: Mapping[str, Asset]
    timestamp_ms: Optional[int] = None
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False, repr=False)

    def __getitem__(self, currency: str) -> Asset:
        return self.assets[currency]

    def get(self, currency: str) -> Optional[Asset]:
        return self.assets.get(currency)


@dataclass(frozen=True)
class Position:
    symbol: str
    side: str
    contracts: Decimal
    available: Optional[Decimal]
    entry_price: Optional[Decimal]
    mark_price: Optional[Decimal]
    notional: Optional[Decimal]
    cost: Optional[Decimal]
    unrealized_pnl: Optional[Decimal]
    percentage: Optional[Decimal]
    account_no: Optional[str] = None
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False, repr=False)


@dataclass(frozen=True)
class Fee:
    currency: str
    rate: Decimal
    cost: Decimal


# ============================================================================
# VIETNAM-SPECIFIC REFERENCE DATA
# ============================================================================

@dataclass(frozen=True)
class CompanyInfo:
    symbol: str
    name: str
    name_en: str = ""
    exchange: str = ""
    sector: str = ""
    industry: str = ""
    website: str = ""
    listing_date: str = ""
    charter_capital: Optional[Decimal] = None
    outstanding_shares: Optional[int] = None
    issued_shares: Optional[int] = None
    foreign_ownership: Optional[Decimal] = None
    foreign_ownership_max: Optional[Decimal] = None
    room_available: Optional[int] = None
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False, repr=False)


@dataclass(frozen=True)
class FinancialReport:
    symbol: str
    report_type: str
    period: str
    year: Optional[int]
    quarter: Optional[int]
    data: Mapping[str, Any]
    currency: str = "VND"
    unit: str = ""


@dataclass(frozen=True)
class TradingHoliday:
    date: date
    name: str = ""
    description: str = ""

