"""
Configuration schema using Pydantic for validation.

Single source of truth for every table the connector consults: trading
schedule, tick rules, lot size, price band, hosts, pagination caps.
Validates on load, fails fast on invalid config, and is frozen afterwards so
one ConnectorConfig can be shared by every component without copying.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# ENUMS
# ============================================================================

class SessionState(str, Enum):
    """Phases of a HOSE/HNX/UPCOM trading day."""
    PRE_OPEN = "pre_open"
    MORNING = "morning"
    LUNCH = "lunch"
    AFTERNOON = "afternoon"
    CLOSING = "closing"
    AFTER_HOURS = "after_hours"
    CLOSED = "closed"


class SsiOrderType(str, Enum):
    """Concrete order types accepted by the SSI trading API."""
    ATO = "ATO"   # At-the-opening auction
    ATC = "ATC"   # At-the-close auction
    LO = "LO"     # Limit
    MTL = "MTL"   # Market-to-limit
    MAK = "MAK"   # Match-and-kill (HNX)
    MP = "MP"     # Market price (legacy alias of MTL)


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ============================================================================
# CREDENTIALS / HOSTS / TRANSPORT
# ============================================================================

class CredentialsConfig(_Frozen):
    """FastConnect consumer credentials and default trading account."""

    consumer_id: str = Field(default="", description="FastConnect consumer ID")
    consumer_secret: str = Field(default="", description="FastConnect consumer secret")
    account_no: Optional[str] = Field(default=None, description="Default trading account")

    @field_validator("consumer_id", "consumer_secret")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def is_complete(self) -> bool:
        return bool(self.consumer_id and self.consumer_secret)


class HostsConfig(_Frozen):
    """Base URLs keyed by the host names used in the endpoint table."""

    data_api: str = Field(default="https://fc-data.ssi.com.vn")
    trading_api: str = Field(default="https://fc-tradeapi.ssi.com.vn")

    @field_validator("data_api", "trading_api")
    @classmethod
    def _no_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"host must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class TransportConfig(_Frozen):
    """HTTP timeouts, retry policy and rate limit."""

    timeout_seconds: float = Field(gt=0, le=120, default=15.0)
    max_retries: int = Field(ge=1, le=10, default=3)
    retry_delay_seconds: float = Field(ge=0, default=1.0)
    retry_backoff_multiplier: float = Field(ge=1.0, default=2.0)
    retry_max_delay_seconds: float = Field(ge=0, default=30.0)
    rate_limit_requests: int = Field(ge=1, default=10, description="Requests per window")
    rate_limit_window_seconds: float = Field(gt=0, default=1.0)


# ============================================================================
# TOKEN / CATALOG / CANDLES
# ============================================================================

class TokenConfig(_Frozen):
    """Credential cache timing."""

    safety_margin_ms: int = Field(ge=0, default=5 * 60 * 1000)
    default_ttl_ms: int = Field(gt=0, default=2 * 60 * 60 * 1000)

    @model_validator(mode="after")
    def _margin_below_ttl(self):
        if self.safety_margin_ms >= self.default_ttl_ms:
            raise ValueError(
                f"safety_margin_ms ({self.safety_margin_ms}) must be < default_ttl_ms ({self.default_ttl_ms})"
            )
        return self


class CatalogConfig(_Frozen):
    """Market catalog pagination."""

    segments: List[str] = Field(default_factory=lambda: ["HOSE", "HNX", "UPCOM"], min_length=1)
    page_size: int = Field(ge=1, le=1000, default=1000)
    max_pages: int = Field(ge=1, le=500, default=50)
    quote_currency: str = Field(default="VND")

    @field_validator("segments")
    @classmethod
    def _upper_unique(cls, v: List[str]) -> List[str]:
        out = [s.strip().upper() for s in v]
        if len(set(out)) != len(out):
            raise ValueError(f"duplicate segments: {out}")
        return out


class CandleConfig(_Frozen):
    """Candle retrieval defaults."""

    default_limit: int = Field(ge=1, default=200)
    daily_min_page_size: int = Field(ge=1, default=100)
    intraday_min_page_size: int = Field(ge=1, default=1000)
    max_page_size: int = Field(ge=1, default=1000)
    max_pages: int = Field(ge=1, le=200, default=20)


# ============================================================================
# SESSION SCHEDULE
# ============================================================================

def _parse_hhmm(text: str) -> int:
    try:
        hh, mm = text.strip().split(":")
        hour, minute = int(hh), int(mm)
    except ValueError as e:
        raise ValueError(f"expected HH:MM, got {text!r}") from e
    if not (0 <= hour <= 24 and 0 <= minute < 60) or (hour == 24 and minute):
        raise ValueError(f"time of day out of range: {text!r}")
    return hour * 60 + minute


class SessionWindowConfig(_Frozen):
    """Half-open [start, end) window in market-local wall time."""

    state: SessionState
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _valid_hhmm(cls, v: str) -> str:
        _parse_hhmm(v)
        return v.strip()

    @property
    def start_minute(self) -> int:
        return _parse_hhmm(self.start)

    @property
    def end_minute(self) -> int:
        return _parse_hhmm(self.end)

    @model_validator(mode="after")
    def _ordered(self):
        if self.state == SessionState.CLOSED:
            raise ValueError("CLOSED is implicit and cannot be configured as a window")
        if self.start_minute >= self.end_minute:
            raise ValueError(f"window {self.state.value}: start {self.start} must be before end {self.end}")
        return self


def _default_windows() -> List[SessionWindowConfig]:
    return [
        SessionWindowConfig(state=SessionState.PRE_OPEN, start="09:00", end="09:15"),
        SessionWindowConfig(state=SessionState.MORNING, start="09:15", end="11:30"),
        SessionWindowConfig(state=SessionState.LUNCH, start="11:30", end="13:00"),
        SessionWindowConfig(state=SessionState.AFTERNOON, start="13:00", end="14:30"),
        SessionWindowConfig(state=SessionState.CLOSING, start="14:30", end="14:45"),
        SessionWindowConfig(state=SessionState.AFTER_HOURS, start="14:45", end="15:00"),
    ]


def _default_allowed_types() -> Dict[SessionState, List[SsiOrderType]]:
    return {
        SessionState.PRE_OPEN: [SsiOrderType.ATO, SsiOrderType.LO],
        SessionState.MORNING: [SsiOrderType.LO, SsiOrderType.MTL],
        SessionState.AFTERNOON: [SsiOrderType.LO, SsiOrderType.MTL],
        SessionState.CLOSING: [SsiOrderType.ATC, SsiOrderType.LO],
        SessionState.AFTER_HOURS: [SsiOrderType.LO],
    }


class SessionConfig(_Frozen):
    """
    Trading-day schedule.

    RULES:
    - Windows are ordered and non-overlapping
    - Anything outside the windows, weekends and holidays is CLOSED
    - LUNCH and CLOSED never accept orders
    """

    timezone: str = Field(default="Asia/Ho_Chi_Minh")
    windows: List[SessionWindowConfig] = Field(default_factory=_default_windows, min_length=1)
    allowed_order_types: Dict[SessionState, List[SsiOrderType]] = Field(default_factory=_default_allowed_types)
    holidays: List[date] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v!r}") from e
        return v

    @model_validator(mode="after")
    def _non_overlapping(self):
        prev_end = -1
        seen = set()
        for w in self.windows:
            if w.state in seen:
                raise ValueError(f"session {w.state.value} configured twice")
            seen.add(w.state)
            if w.start_minute < prev_end:
                raise ValueError(f"session {w.state.value} overlaps or is out of order")
            prev_end = w.end_minute
        for state in (SessionState.LUNCH, SessionState.CLOSED):
            if self.allowed_order_types.get(state):
                raise ValueError(f"{state.value} cannot allow order types")
        return self


# ============================================================================
# ORDER RULES / FEES
# ============================================================================

class TickRuleConfig(_Frozen):
    """Tick size for prices in [min_price, max_price) on one segment."""

    segment: str
    min_price: Decimal = Field(ge=Decimal("0"))
    max_price: Decimal
    tick_size: Decimal = Field(gt=Decimal("0"))

    @field_validator("segment")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def _range(self):
        if self.min_price >= self.max_price:
            raise ValueError(f"tick rule {self.segment}: min_price must be < max_price")
        return self


def _default_tick_rules() -> List[TickRuleConfig]:
    top = Decimal("999999999")
    return [
        TickRuleConfig(segment="HOSE", min_price=Decimal("0"), max_price=Decimal("10000"), tick_size=Decimal("10")),
        TickRuleConfig(segment="HOSE", min_price=Decimal("10000"), max_price=Decimal("50000"), tick_size=Decimal("50")),
        TickRuleConfig(segment="HOSE", min_price=Decimal("50000"), max_price=top, tick_size=Decimal("100")),
        TickRuleConfig(segment="HNX", min_price=Decimal("0"), max_price=top, tick_size=Decimal("100")),
        TickRuleConfig(segment="UPCOM", min_price=Decimal("0"), max_price=top, tick_size=Decimal("100")),
    ]


class OrderRulesConfig(_Frozen):
    """Lot size, tick table and daily price band."""

    tick_rules: List[TickRuleConfig] = Field(default_factory=_default_tick_rules)
    default_tick_size: Decimal = Field(gt=Decimal("0"), default=Decimal("100"))
    default_lot_size: int = Field(ge=1, default=100)
    price_limit_pct: Decimal = Field(gt=Decimal("0"), lt=Decimal("1"), default=Decimal("0.07"))
    segment_price_limit_pct: Dict[str, Decimal] = Field(
        default_factory=dict,
        description="Optional per-segment band override, e.g. {'HNX': 0.10}",
    )

    @field_validator("segment_price_limit_pct")
    @classmethod
    def _band_range(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        out = {}
        for seg, pct in v.items():
            if not (Decimal("0") < pct < Decimal("1")):
                raise ValueError(f"price band for {seg} must be in (0, 1), got {pct}")
            out[seg.strip().upper()] = pct
        return out

    def limit_pct_for(self, segment: str) -> Decimal:
        return self.segment_price_limit_pct.get(segment.upper(), self.price_limit_pct)


class FeeConfig(_Frozen):
    """Flat percentage brokerage fee."""

    maker: Decimal = Field(ge=Decimal("0"), default=Decimal("0.0015"))
    taker: Decimal = Field(ge=Decimal("0"), default=Decimal("0.0015"))
    currency: str = Field(default="VND")


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class LoggingConfig(_Frozen):
    """Logging configuration."""

    log_dir: Path = Field(default=Path("logs"))
    log_level: LogLevel = Field(default=LogLevel.INFO)
    console_level: LogLevel = Field(default=LogLevel.INFO)
    json_logs: bool = Field(default=True)
    file_logging: bool = Field(default=True)
    max_bytes: int = Field(ge=1_000_000, le=100_000_000, default=10_000_000)
    backup_count: int = Field(ge=1, le=20, default=5)


# ============================================================================
# MASTER CONFIGURATION
# ============================================================================

# Flat option names accepted by ConnectorConfig.from_options
_OPTION_ALIASES = {
    "consumerID": ("credentials", "consumer_id"),
    "consumerId": ("credentials", "consumer_id"),
    "consumer_id": ("credentials", "consumer_id"),
    "apiKey": ("credentials", "consumer_id"),
    "consumerSecret": ("credentials", "consumer_secret"),
    "consumer_secret": ("credentials", "consumer_secret"),
    "apiSecret": ("credentials", "consumer_secret"),
    "accountNo": ("credentials", "account_no"),
    "account_no": ("credentials", "account_no"),
}


class ConnectorConfig(_Frozen):
    """
    Master configuration for one connector instance.

    Immutable once built; components receive the sub-config they need.
    """

    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    hosts: HostsConfig = Field(default_factory=HostsConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    token: TokenConfig = Field(default_factory=TokenConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    order_rules: OrderRulesConfig = Field(default_factory=OrderRulesConfig)
    candles: CandleConfig = Field(default_factory=CandleConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ConnectorConfig":
        """
        Build config from a flat option map such as the exchange factory receives.

        Recognised flat keys (consumerID, consumerSecret, accountNo, ...) are
        folded into their sections; nested section dicts pass through as-is.
        """
        nested: Dict[str, Dict[str, Any]] = {}
        for key, value in options.items():
            if key in _OPTION_ALIASES:
                section, field = _OPTION_ALIASES[key]
                nested.setdefault(section, {})[field] = value
            elif key in cls.model_fields and isinstance(value, Mapping):
                nested.setdefault(key, {}).update(value)
            else:
                raise ValueError(f"unknown connector option: {key!r}")
        return cls(**nested)

    def with_credentials(self, **changes: Any) -> "ConnectorConfig":
        """Copy with credential fields replaced (config itself stays frozen)."""
        creds = self.credentials.model_copy(update=changes)
        return self.model_copy(update={"credentials": CredentialsConfig(**creds.model_dump())})
