"""
Market metadata: instruments, tick rules and the segment catalog.
"""

from .instrument import (
    Instrument,
    PrecisionMode,
    build_raw_id,
    build_symbol,
)
from .ticks import PriceTickRule, TickTable
from .fields import normalize_record
from .catalog import CatalogSnapshot, MarketCatalog

__all__ = [
    "Instrument",
    "PrecisionMode",
    "build_raw_id",
    "build_symbol",
    "PriceTickRule",
    "TickTable",
    "normalize_record",
    "CatalogSnapshot",
    "MarketCatalog",
]
