"""
Instrument metadata and symbol helpers.

Identifiers:
    raw id            "HOSE:SSI"       catalog primary key
    canonical symbol  "HOSE:SSI/VND"   what callers pass around
    ticker            "SSI"            bare code, may be listed on several segments
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional


class PrecisionMode(str, Enum):
    """How price precision is expressed."""
    TICK_SIZE = "tick_size"
    DECIMAL_PLACES = "decimal_places"


def build_raw_id(segment: str, ticker: str) -> str:
    return f"{segment.strip().upper()}:{ticker.strip().upper()}"


def build_symbol(segment: str, ticker: str, quote: str = "VND") -> str:
    """build_symbol("hose", "ssi") -> "HOSE:SSI/VND" """
    return f"{build_raw_id(segment, ticker)}/{quote.strip().upper()}"


@dataclass(frozen=True)
class Instrument:
    """
    One listed security.

    Immutable; a catalog rebuild creates entirely new instances.
    """
    raw_id: str
    symbol: str
    ticker: str
    segment: str
    price_tick: Decimal
    precision_mode: PrecisionMode
    lot_size: int
    reference_price: Optional[Decimal] = None
    ceiling: Optional[Decimal] = None
    floor: Optional[Decimal] = None
    quote: str = "VND"
    name: str = ""
    info: Mapping[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @property
    def has_price_tick(self) -> bool:
        return self.precision_mode == PrecisionMode.TICK_SIZE
