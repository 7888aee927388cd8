"""
Time abstraction and trading session schedule.
"""

from .clock import Clock, RealTimeClock, FixedClock, MARKET_TZ
from .session import SessionClock, SessionWindow, NON_TRADING_STATES

__all__ = [
    "Clock",
    "RealTimeClock",
    "FixedClock",
    "MARKET_TZ",
    "SessionClock",
    "SessionWindow",
    "NON_TRADING_STATES",
]
