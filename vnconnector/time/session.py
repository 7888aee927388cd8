"""
Trading session state machine for HOSE / HNX / UPCOM.

Pure function of wall-clock time: (weekday, holiday, minute-of-day) against a
static, ordered table of half-open windows. Anything outside the table,
weekends and configured holidays are CLOSED.

Default schedule (Asia/Ho_Chi_Minh):
    09:00-09:15  PRE_OPEN     ATO, LO
    09:15-11:30  MORNING      LO, MTL
    11:30-13:00  LUNCH        (none)
    13:00-14:30  AFTERNOON    LO, MTL
    14:30-14:45  CLOSING      ATC, LO
    14:45-15:00  AFTER_HOURS  LO (negotiated deals)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import FrozenSet, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from vnconnector.config import SessionConfig, SessionState, SsiOrderType

NON_TRADING_STATES = frozenset({SessionState.CLOSED, SessionState.LUNCH})


@dataclass(frozen=True)
class SessionWindow:
    """Half-open [start_minute, end_minute) in market-local minutes of day."""
    state: SessionState
    start_minute: int
    end_minute: int

    def contains(self, minute_of_day: int) -> bool:
        return self.start_minute <= minute_of_day < self.end_minute


class SessionClock:
    """
    Stateless session lookup.

    THREAD SAFETY:
    - Immutable after construction; safe to share
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or SessionConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self.windows: Tuple[SessionWindow, ...] = tuple(
            SessionWindow(w.state, w.start_minute, w.end_minute) for w in self.config.windows
        )
        self._allowed = {
            state: frozenset(types) for state, types in self.config.allowed_order_types.items()
        }
        self.holidays: FrozenSet[date] = frozenset(self.config.holidays)

    def with_holidays(self, holidays: Iterable[date]) -> "SessionClock":
        """New clock with ``holidays`` added to the configured ones."""
        merged = sorted(self.holidays | set(holidays))
        return SessionClock(self.config.model_copy(update={"holidays": merged}))

    def to_local(self, dt: datetime) -> datetime:
        """Market-local view of ``dt``; naive values are read as market wall time."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self.tz)
        return dt.astimezone(self.tz)

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def session_at(self, dt: datetime) -> SessionState:
        local = self.to_local(dt)
        if not self.is_trading_day(local.date()):
            return SessionState.CLOSED
        minute = local.hour * 60 + local.minute
        for window in self.windows:
            if window.contains(minute):
                return window.state
        return SessionState.CLOSED

    def is_open_at(self, dt: datetime) -> bool:
        return self.session_at(dt) not in NON_TRADING_STATES

    def allowed_order_types_at(self, dt: datetime) -> FrozenSet[SsiOrderType]:
        return self.allowed_order_types_for(self.session_at(dt))

    def allowed_order_types_for(self, state: SessionState) -> FrozenSet[SsiOrderType]:
        if state in NON_TRADING_STATES:
            return frozenset()
        return self._allowed.get(state, frozenset())

    def next_transition(self, dt: datetime) -> datetime:
        """
        First window boundary strictly after ``dt`` (market-local, aware).

        Skips weekends and holidays; searches at most two weeks ahead.
        """
        local = self.to_local(dt)
        minute = local.hour * 60 + local.minute
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)

        if self.is_trading_day(local.date()):
            for boundary in self._boundaries():
                if boundary > minute:
                    return midnight + timedelta(minutes=boundary)

        for offset in range(1, 15):
            day = (midnight + timedelta(days=offset)).date()
            if self.is_trading_day(day):
                start = self.windows[0].start_minute
                return datetime(day.year, day.month, day.day, tzinfo=self.tz) + timedelta(minutes=start)

        raise ValueError("no trading day within the next 14 days")

    def _boundaries(self) -> Tuple[int, ...]:
        points = set()
        for w in self.windows:
            points.add(w.start_minute)
            points.add(w.end_minute)
        return tuple(sorted(points))
