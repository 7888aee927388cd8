"""
Time abstraction layer.

Provides an injectable clock so token expiry, candle defaults and session
checks can be driven deterministically in tests and replay.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

MARKET_TZ = ZoneInfo("Asia/Ho_Chi_Minh")


class Clock(ABC):
    """Abstract clock interface"""

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC, timezone-aware)"""
        pass

    def now_ms(self) -> int:
        """Current epoch milliseconds."""
        return int(self.now().timestamp() * 1000)

    def now_local(self, tz: ZoneInfo = MARKET_TZ) -> datetime:
        """Current time in the given zone (market time by default)."""
        return self.now().astimezone(tz)


class RealTimeClock(Clock):
    """Wall clock for live use."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Manually driven clock for tests and replay.

    Naive datetimes passed in are treated as UTC.
    """

    def __init__(self, start_time: Optional[datetime] = None):
        self._current = _as_utc(start_time or datetime(2026, 1, 5, 3, 0, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._current

    def set_time(self, new_time: datetime) -> None:
        self._current = _as_utc(new_time)

    def advance(self, delta: timedelta) -> None:
        if delta < timedelta(0):
            raise ValueError(f"Cannot advance clock backwards: {delta}")
        self._current = self._current + delta


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
