"""
Candle (OHLCV) retrieval and normalisation.

Pipeline:
1. Resolve symbol through the market catalog
2. Map timeframe -> upstream resolution ("1d" uses DailyOhlc, the rest IntradayOhlc)
3. Default until=now, limit=200, since=until - limit * timeframe
4. Page through the endpoint (bounded by max_pages)
5. Normalise field names once per row, drop rows whose date does not parse
6. Collapse duplicate timestamps (last row in upstream order wins)
7. Sort ascending, keep [since, until], keep the most recent ``limit``

Timestamps are epoch ms of the market-local (Asia/Ho_Chi_Minh) bar start.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo

import pandas as pd

from vnconnector.config import ConnectorConfig
from vnconnector.errors import InvalidTimeframe
from vnconnector.logging import get_logger, log_performance, LogStream
from vnconnector.market.catalog import MarketCatalog
from vnconnector.market.fields import as_text, first, normalize_record, to_float
from vnconnector.net import envelope
from vnconnector.net.transport import Transport
from vnconnector.time.clock import Clock, RealTimeClock

# timeframe -> (upstream resolution, seconds)
TIMEFRAMES: Dict[str, tuple] = {
    "1m": ("1", 60),
    "3m": ("3", 180),
    "5m": ("5", 300),
    "15m": ("15", 900),
    "30m": ("30", 1800),
    "1h": ("60", 3600),
    "1d": ("D", 86400),
}

DAILY = "1d"

_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d")
_TIME_FORMATS = ("%H:%M:%S", "%H:%M")

TimeArg = Union[int, datetime, None]


@dataclass(frozen=True)
class Candle:
    timestamp_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    quote_volume: float = 0.0

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc)


def timeframe_seconds(timeframe: str) -> int:
    try:
        return TIMEFRAMES[timeframe][1]
    except KeyError:
        raise InvalidTimeframe(f"invalid timeframe: {timeframe!r} (supported: {', '.join(TIMEFRAMES)})") from None


def resolution_for(timeframe: str) -> str:
    try:
        return TIMEFRAMES[timeframe][0]
    except KeyError:
        raise InvalidTimeframe(f"invalid timeframe: {timeframe!r} (supported: {', '.join(TIMEFRAMES)})") from None


def parse_ssi_datetime(date_text: str, time_text: str = "", tz: ZoneInfo = ZoneInfo("Asia/Ho_Chi_Minh")) -> Optional[int]:
    """
    Epoch ms for an upstream date (+ optional time) in market time, or None.

    Dates may be "dd/mm/yyyy" or "yyyy-mm-dd", optionally already carrying
    "HH:MM[:SS]". If the separate time does not parse the date alone is used.
    """
    date_text = (date_text or "").strip().replace("T", " ")
    time_text = (time_text or "").strip()
    if not date_text:
        return None

    candidates = []
    if time_text:
        candidates.append(f"{date_text} {time_text}")
    candidates.append(date_text)

    for text in candidates:
        for date_fmt in _DATE_FORMATS:
            for fmt in (date_fmt,) + tuple(f"{date_fmt} {t}" for t in _TIME_FORMATS):
                try:
                    parsed = datetime.strptime(text, fmt)
                except ValueError:
                    continue
                return int(parsed.replace(tzinfo=tz).timestamp() * 1000)
    return None


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """DataFrame indexed by UTC timestamp with open/high/low/close/volume/quote_volume."""
    columns = ["open", "high", "low", "close", "volume", "quote_volume"]
    if not candles:
        return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], tz="UTC", name="timestamp"))
    df = pd.DataFrame([asdict(c) for c in candles])
    df["timestamp"] = pd.to_datetime(df.pop("timestamp_ms"), unit="ms", utc=True)
    return df.set_index("timestamp")[columns]


class CandleFetcher:
    """
    Fetch canonical candle series.

    Usage:
        fetcher = CandleFetcher(config, catalog, transport)
        candles = fetcher.fetch_candles("HOSE:SSI", "1d", limit=30)
    """

    def __init__(
        self,
        config: ConnectorConfig,
        catalog: MarketCatalog,
        transport: Transport,
        clock: Optional[Clock] = None,
    ):
        self._cfg = config.candles
        self._tz = ZoneInfo(config.session.timezone)
        self._catalog = catalog
        self._transport = transport
        self._clock = clock or RealTimeClock()
        self.logger = get_logger(LogStream.DATA)

    def _to_ms(self, value: TimeArg) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=self._tz)
            return int(value.timestamp() * 1000)
        return int(value)

    def _format_date(self, ms: int) -> str:
        return datetime.fromtimestamp(ms / 1000, tz=self._tz).strftime("%d/%m/%Y")

    @log_performance(LogStream.DATA)
    def fetch_candles(
        self,
        symbol: str,
        timeframe: str,
        since: TimeArg = None,
        until: TimeArg = None,
        limit: Optional[int] = None,
    ) -> List[Candle]:
        """
        Raises:
            SymbolNotFound / AmbiguousSymbol: symbol does not resolve
            InvalidTimeframe: timeframe not in TIMEFRAMES
            TransportError / DecodeError / BrokerError: upstream failure
        """
        instrument = self._catalog.resolve(symbol)
        resolution = resolution_for(timeframe)
        tf_secs = timeframe_seconds(timeframe)

        if not limit or limit <= 0:
            limit = self._cfg.default_limit
        until_ms = self._to_ms(until)
        if until_ms is None:
            until_ms = self._clock.now_ms()
        since_ms = self._to_ms(since)
        if since_ms is None:
            since_ms = until_ms - limit * tf_secs * 1000
        if since_ms > until_ms:
            return []

        daily = timeframe == DAILY
        params: Dict[str, Any] = {
            "Symbol": instrument.ticker,
            "FromDate": self._format_date(since_ms),
            "ToDate": self._format_date(until_ms),
            "ascending": "true",
        }
        if daily:
            endpoint = "daily_ohlc"
            page_size = min(max(limit, self._cfg.daily_min_page_size), self._cfg.max_page_size)
        else:
            endpoint = "intraday_ohlc"
            page_size = min(max(limit, self._cfg.intraday_min_page_size), self._cfg.max_page_size)
            params["resolution"] = resolution

        rows = self._fetch_rows(endpoint, params, page_size)
        candles = self.normalize(rows, daily, since_ms, until_ms, limit)

        self.logger.info(
            "Candles fetched",
            extra={"symbol": instrument.symbol, "timeframe": timeframe, "rows": len(rows),
                   "candles": len(candles), "since": since_ms, "until": until_ms},
        )
        return candles

    def _fetch_rows(self, endpoint: str, params: Dict[str, Any], page_size: int) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for page in range(1, self._cfg.max_pages + 1):
            body = self._transport.request(endpoint, {**params, "PageIndex": page, "PageSize": page_size})
            records = envelope.as_records(envelope.unwrap(body))
            rows.extend(records)
            if len(records) < page_size:
                break
        else:
            self.logger.warning("Candle page cap reached", extra={"endpoint": endpoint, "max_pages": self._cfg.max_pages})
        return rows

    def parse_row(self, raw: Mapping[str, Any], daily: bool) -> Optional[Candle]:
        row = normalize_record(raw)
        time_text = "" if daily else as_text(first(row, "time"))
        stamp = parse_ssi_datetime(as_text(first(row, "tradingdate")), time_text, self._tz)
        if stamp is None:
            return None
        return Candle(
            timestamp_ms=stamp,
            open=to_float(first(row, "open", "openprice")),
            high=to_float(first(row, "high", "highestprice", "highprice")),
            low=to_float(first(row, "low", "lowestprice", "lowprice")),
            close=to_float(first(row, "close", "closeprice")),
            volume=to_float(first(row, "volume", "totalmatchvol", "totaltradedvol")),
            quote_volume=to_float(first(row, "value", "totalmatchval", "totaltradedvalue")),
        )

    def normalize(
        self,
        rows: Sequence[Mapping[str, Any]],
        daily: bool,
        since_ms: Optional[int],
        until_ms: Optional[int],
        limit: Optional[int],
    ) -> List[Candle]:
        by_ts: Dict[int, Candle] = {}
        dropped = 0
        for raw in rows:
            candle = self.parse_row(raw, daily)
            if candle is None:
                dropped += 1
                continue
            by_ts[candle.timestamp_ms] = candle

        if dropped:
            self.logger.debug("Dropped unparseable candle rows", extra={"dropped": dropped})

        out = [by_ts[ts] for ts in sorted(by_ts)]
        if since_ms is not None:
            out = [c for c in out if c.timestamp_ms >= since_ms]
        if until_ms is not None:
            out = [c for c in out if c.timestamp_ms <= until_ms]
        if limit and limit > 0 and len(out) > limit:
            out = out[-limit:]
        return out
