"""
Market catalog for HOSE / HNX / UPCOM.

CRITICAL PROPERTIES:
1. Three indices (by symbol, by raw id, by ticker) are built together
   and published as ONE immutable snapshot under the write lock
2. Readers never see a partially rebuilt catalog; resolves during a
   rebuild use the previous snapshot
3. Pagination is bounded by max_pages even if upstream never sends a short page
4. A failing details endpoint degrades to base-listing data; a failing
   base listing aborts the rebuild and keeps the previous snapshot

Base rows come from Securities, detail rows from SecuritiesDetails whose
entries nest the per-instrument records under "RepeatedInfo".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from vnconnector.config import ConnectorConfig
from vnconnector.errors import AmbiguousSymbol, BrokerError, DecodeError, SymbolNotFound, TransportError
from vnconnector.logging import get_logger, log_performance, LogStream
from vnconnector.market.fields import as_text, first, normalize_record, to_decimal, to_int
from vnconnector.market.instrument import Instrument, PrecisionMode, build_raw_id, build_symbol
from vnconnector.net import envelope
from vnconnector.net.transport import Transport
from vnconnector.utils.locks import ReadWriteLock

_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class CatalogSnapshot:
    """One consistent build of the three lookup indices."""
    by_symbol: Mapping[str, Instrument] = field(default_factory=lambda: _EMPTY)
    by_raw_id: Mapping[str, Instrument] = field(default_factory=lambda: _EMPTY)
    by_ticker: Mapping[str, Tuple[Instrument, ...]] = field(default_factory=lambda: _EMPTY)

    @classmethod
    def build(cls, instruments: Iterable[Instrument]) -> "CatalogSnapshot":
        by_symbol: Dict[str, Instrument] = {}
        by_raw_id: Dict[str, Instrument] = {}
        by_ticker: Dict[str, List[Instrument]] = {}
        for inst in instruments:
            by_symbol[inst.symbol] = inst
            by_raw_id[inst.raw_id] = inst
            by_ticker.setdefault(inst.ticker, []).append(inst)
        return cls(
            by_symbol=MappingProxyType(by_symbol),
            by_raw_id=MappingProxyType(by_raw_id),
            by_ticker=MappingProxyType({
                t: tuple(sorted(v, key=lambda i: i.raw_id)) for t, v in by_ticker.items()
            }),
        )

    def __len__(self) -> int:
        return len(self.by_raw_id)


class MarketCatalog:
    """
    Paginated multi-segment instrument catalog.

    THREAD SAFETY:
    - rebuild() and resolve() may run concurrently
    - Only the final publish takes the write lock
    """

    DETAIL_LIST_KEY = "repeatedinfo"

    def __init__(self, config: ConnectorConfig, transport: Transport):
        self._cfg = config.catalog
        self._default_lot = config.order_rules.default_lot_size
        self._transport = transport
        self._lock = ReadWriteLock()
        self._snapshot = CatalogSnapshot()
        self._loaded = False
        self.logger = get_logger(LogStream.MARKETS)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> CatalogSnapshot:
        with self._lock.read():
            return self._snapshot

    @property
    def is_loaded(self) -> bool:
        with self._lock.read():
            return self._loaded

    def __len__(self) -> int:
        return len(self.snapshot)

    def instruments(self) -> List[Instrument]:
        return sorted(self.snapshot.by_raw_id.values(), key=lambda i: i.raw_id)

    def resolve(self, id_or_ticker: str) -> Instrument:
        """
        Look up an instrument by canonical symbol, "SEG:TICKER" or bare ticker.

        Raises:
            SymbolNotFound: nothing matches
            AmbiguousSymbol: bare ticker listed on more than one segment
        """
        key = (id_or_ticker or "").strip().upper()
        if not key:
            raise SymbolNotFound("empty symbol")
        snap = self.snapshot

        inst = snap.by_symbol.get(key)
        if inst is not None:
            return inst

        if "/" in key:
            raise SymbolNotFound(f"symbol not found: {id_or_ticker}")

        if ":" in key:
            inst = snap.by_raw_id.get(key)
            if inst is None:
                raise SymbolNotFound(f"symbol not found: {id_or_ticker}")
            return inst

        matches = snap.by_ticker.get(key, ())
        if not matches:
            raise SymbolNotFound(f"symbol not found: {id_or_ticker}")
        if len(matches) > 1:
            candidates = [m.raw_id for m in matches]
            raise AmbiguousSymbol(
                f"ticker {key} is listed on {', '.join(candidates)}; qualify it with a segment",
                candidates=candidates,
            )
        return matches[0]

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    @log_performance(LogStream.MARKETS)
    def rebuild(self, segments: Optional[Sequence[str]] = None) -> CatalogSnapshot:
        """
        Fetch every configured segment and publish a fresh snapshot.

        Raises:
            TransportError / DecodeError / BrokerError: base listing failed
            (the previously published snapshot is kept)
        """
        targets = [s.strip().upper() for s in (segments or self._cfg.segments)]
        instruments: List[Instrument] = []

        for segment in targets:
            base_rows = self._paginate("securities", segment, flatten=False)
            try:
                detail_rows = self._paginate("securities_details", segment, flatten=True)
            except (TransportError, DecodeError, BrokerError) as e:
                self.logger.warning(
                    "Securities details unavailable, using base listing only",
                    extra={"segment": segment, "error": str(e), "error_type": type(e).__name__},
                )
                detail_rows = []

            built = self._merge(segment, base_rows, detail_rows)
            instruments.extend(built)
            self.logger.info(
                "Segment loaded",
                extra={"segment": segment, "base_rows": len(base_rows),
                       "detail_rows": len(detail_rows), "instruments": len(built)},
            )

        snapshot = CatalogSnapshot.build(instruments)
        with self._lock.write():
            self._snapshot = snapshot
            self._loaded = True

        self.logger.info("Market catalog published", extra={"instruments": len(snapshot), "segments": targets})
        return snapshot

    def _paginate(self, endpoint: str, segment: str, flatten: bool) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        page_size = self._cfg.page_size

        for page in range(1, self._cfg.max_pages + 1):
            body = self._transport.request(endpoint, {
                "market": segment,
                "pageIndex": page,
                "pageSize": page_size,
            })
            records = [normalize_record(r) for r in envelope.as_records(envelope.unwrap(body))]
            if flatten:
                records = self._flatten(records)
            rows.extend(records)

            if len(records) < page_size:
                break
        else:
            self.logger.warning(
                "Page cap reached",
                extra={"endpoint": endpoint, "segment": segment, "max_pages": self._cfg.max_pages},
            )
        return rows

    def _flatten(self, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for entry in entries:
            nested = entry.get(self.DETAIL_LIST_KEY)
            if isinstance(nested, list):
                out.extend(normalize_record(r) for r in nested if isinstance(r, dict))
            else:
                out.append(entry)
        return out

    def _merge(
        self,
        segment: str,
        base_rows: List[Dict[str, Any]],
        detail_rows: List[Dict[str, Any]],
    ) -> List[Instrument]:
        merged: Dict[str, Dict[str, Any]] = {}
        for row in base_rows:
            ticker = as_text(first(row, "symbol")).upper()
            if ticker:
                merged.setdefault(ticker, {}).update(row)

        for row in detail_rows:
            ticker = as_text(first(row, "symbol")).upper()
            if ticker not in merged:
                continue
            merged[ticker].update({k: v for k, v in row.items() if v is not None})

        return [self._build_instrument(segment, ticker, data) for ticker, data in merged.items()]

    def _build_instrument(self, segment: str, ticker: str, data: Dict[str, Any]) -> Instrument:
        tick = to_decimal(first(data, "tickincrement1"))
        if tick is None or tick <= 0:
            tick = Decimal("0")
        lot = to_int(first(data, "lotsize", "boardlot"))
        if lot is None or lot <= 0:
            lot = self._default_lot

        info = dict(data)
        info["segment"] = segment
        info["ticker"] = ticker

        return Instrument(
            raw_id=build_raw_id(segment, ticker),
            symbol=build_symbol(segment, ticker, self._cfg.quote_currency),
            ticker=ticker,
            segment=segment,
            price_tick=tick,
            precision_mode=PrecisionMode.TICK_SIZE if tick > 0 else PrecisionMode.DECIMAL_PLACES,
            lot_size=lot,
            reference_price=_positive(to_decimal(first(data, "refprice", "referenceprice", "basicprice"))),
            ceiling=_positive(to_decimal(first(data, "ceilingprice", "ceiling"))),
            floor=_positive(to_decimal(first(data, "floorprice", "floor"))),
            quote=self._cfg.quote_currency,
            name=as_text(first(data, "stocknameen", "stockenname", "stockname", "stockvnname")),
            info=MappingProxyType(info),
        )


def _positive(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is None or value <= 0:
        return None
    return value
