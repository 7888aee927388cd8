"""Historical market data."""

from .candles import (
    Candle,
    CandleFetcher,
    TIMEFRAMES,
    candles_to_frame,
    parse_ssi_datetime,
    resolution_for,
    timeframe_seconds,
)

__all__ = [
    "Candle",
    "CandleFetcher",
    "TIMEFRAMES",
    "candles_to_frame",
    "parse_ssi_datetime",
    "resolution_for",
    "timeframe_seconds",
]
