"""
SSI FastConnect connector (HOSE / HNX / UPCOM).

CRITICAL PROPERTIES:
1. Every order passes the local OrderGate before any network call
2. One shared access token per connector, refreshed under an exclusive lock
3. Market catalog is a copy-on-write snapshot; lookups never block on rebuilds
4. All order calls logged under the client order id as correlation id
5. Order book, streaming and leverage raise CapabilityNotImplemented

Endpoints and payload shapes follow FastConnect Data/Trading API v2.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from vnconnector.auth.token_cache import TokenCache
from vnconnector.config import ConnectorConfig, SessionState
from vnconnector.data.candles import Candle, CandleFetcher, parse_ssi_datetime
from vnconnector.errors import (
    AmbiguousSymbol,
    BrokerError,
    ConnectorError,
    InvalidOrderParams,
    OrderRejected,
    SymbolNotFound,
)
from vnconnector.logging import get_logger, log_performance, LogContext, LogStream
from vnconnector.market.catalog import MarketCatalog
from vnconnector.market.fields import as_text, first, normalize_record, to_decimal, to_int
from vnconnector.market.instrument import Instrument
from vnconnector.net import envelope
from vnconnector.net.transport import HttpTransport, Transport
from vnconnector.risk.gate import SIDES, OrderGate
from vnconnector.time.clock import Clock, RealTimeClock
from vnconnector.time.session import SessionClock

from .base import ExchangeConnector
from .models import (
    Asset,
    Balances,
    CompanyInfo,
    Fee,
    FinancialReport,
    Order,
    OrderSide,
    Position,
    Ticker,
    TradingHoliday,
    canonical_order_type,
    map_order_status,
)

_SIDE_ALIASES = {"buy": OrderSide.BUY, "b": OrderSide.BUY, "sell": OrderSide.SELL, "s": OrderSide.SELL}


def _wire_number(value: Decimal) -> Any:
    """Decimal -> JSON number (int when integral)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# ============================================================================
# VIETNAM CONNECTOR
# ============================================================================

class VietnamConnector(ExchangeConnector):
    """
    Canonical connector for the Vietnamese stock market via SSI FastConnect.

    THREAD SAFETY:
    - Safe to share across threads; shared state lives in TokenCache and
      MarketCatalog, each behind its own read/write lock

    USAGE:
        connector = VietnamConnector(ConnectorConfig.from_options({
            "consumerID": "...", "consumerSecret": "...", "accountNo": "...",
        }))
        connector.load_markets()
        order = connector.create_order("HOSE:SSI/VND", "limit", "buy", 100, 25500)
    """

    id = "vietnam"
    name = "SSI FastConnect"

    def __init__(
        self,
        config: Optional[ConnectorConfig] = None,
        transport: Optional[Transport] = None,
        clock: Optional[Clock] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or ConnectorConfig()
        self.clock = clock or RealTimeClock()
        self.logger = get_logger(LogStream.ORDERS)

        self.transport = transport or HttpTransport(self.config, session=session)
        self.token_cache = TokenCache(self.config, self.transport, self.clock)
        set_provider = getattr(self.transport, "set_token_provider", None)
        if set_provider is not None:
            set_provider(self.token_cache)

        self.catalog = MarketCatalog(self.config, self.transport)
        self.session_clock = SessionClock(self.config.session)
        self.gate = OrderGate(self.session_clock, self.config.order_rules)
        self.candles = CandleFetcher(self.config, self.catalog, self.transport, self.clock)

        get_logger(LogStream.SYSTEM).info("VietnamConnector initialized", extra={
            "segments": list(self.config.catalog.segments),
            "data_api": self.config.hosts.data_api,
            "trading_api": self.config.hosts.trading_api,
        })

    def extra_capabilities(self) -> Sequence[str]:
        return ("fetch_company_info", "fetch_financial_report", "fetch_trading_holidays", "session_state")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return envelope.unwrap(self.transport.request(endpoint, params))

    def _account(self, params: Optional[Mapping[str, Any]]) -> str:
        params = params or {}
        account = as_text(params.get("accountNo") or params.get("account_no")) or self.config.credentials.account_no
        if not account:
            raise InvalidOrderParams("account number is required (params['accountNo'] or credentials.account_no)")
        return account

    def _symbol_for_ticker(self, ticker: str) -> str:
        """Canonical symbol for an upstream ticker, or the ticker itself."""
        if not ticker or not self.catalog.is_loaded:
            return ticker
        try:
            return self.catalog.resolve(ticker).symbol
        except (SymbolNotFound, AmbiguousSymbol):
            return ticker

    def _parse_time(self, value: Any) -> Optional[int]:
        number = to_int(value)
        if number is not None and number > 10 ** 11:
            return number
        text = as_text(value)
        if not text:
            return None
        return parse_ssi_datetime(text.split(".")[0], "", self.session_clock.tz)

    def _local_date(self, ms: int) -> date:
        return datetime.fromtimestamp(ms / 1000, tz=self.session_clock.tz).date()

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    def load_markets(self, reload: bool = False) -> Dict[str, Instrument]:
        if reload or not self.catalog.is_loaded:
            self.catalog.rebuild()
        return dict(self.catalog.snapshot.by_symbol)

    def market(self, symbol: str) -> Instrument:
        """Resolve a symbol, raw id or bare ticker, loading markets on first use."""
        if not self.catalog.is_loaded:
            self.load_markets()
        return self.catalog.resolve(symbol)

    # ------------------------------------------------------------------
    # Tickers and candles
    # ------------------------------------------------------------------

    def _parse_ticker(self, raw: Mapping[str, Any], symbol: str) -> Ticker:
        row = normalize_record(raw)
        close = to_decimal(first(row, "closeprice", "lastprice"))
        prior = to_decimal(first(row, "priorcloseprice", "refprice"))
        change, percentage = None, None
        if close is not None and prior is not None:
            change = close - prior
            if prior > 0:
                percentage = change / prior * 100
        return Ticker(
            symbol=symbol,
            timestamp_ms=parse_ssi_datetime(as_text(first(row, "tradingdate")), "", self.session_clock.tz),
            open=to_decimal(first(row, "openprice")),
            high=to_decimal(first(row, "highestprice", "highprice")),
            low=to_decimal(first(row, "lowestprice", "lowprice")),
            close=close,
            previous_close=prior,
            change=change,
            percentage=percentage,
            base_volume=to_decimal(first(row, "totalvolume", "totalmatchvol")),
            quote_volume=to_decimal(first(row, "totalvalue", "totalmatchval")),
            info=dict(raw),
        )

    def fetch_ticker(self, symbol: str) -> Ticker:
        instrument = self.market(symbol)
        rows = envelope.as_records(self._call("daily_stock_price", {
            "symbol": instrument.ticker,
            "market": instrument.segment,
        }))
        matching = [r for r in rows if as_text(first(normalize_record(r), "symbol")).upper() in ("", instrument.ticker)]
        if not matching:
            raise BrokerError(f"no price data for {instrument.symbol}")
        latest = max(
            matching,
            key=lambda r: parse_ssi_datetime(as_text(first(normalize_record(r), "tradingdate")), "",
                                             self.session_clock.tz) or 0,
        )
        return self._parse_ticker(latest, instrument.symbol)

    def fetch_tickers(self, symbols: Optional[Sequence[str]] = None) -> Dict[str, Ticker]:
        if not symbols:
            raise ValueError("symbols are required")
        by_ticker = {}
        for s in symbols:
            instrument = self.market(s)
            by_ticker[instrument.ticker] = instrument.symbol

        rows = envelope.as_records(self._call("daily_stock_price", {"symbols": ",".join(by_ticker)}))
        tickers: Dict[str, Ticker] = {}
        latest_ts: Dict[str, int] = {}
        for raw in rows:
            row = normalize_record(raw)
            symbol = by_ticker.get(as_text(first(row, "symbol")).upper())
            if symbol is None:
                continue
            ticker = self._parse_ticker(raw, symbol)
            stamp = ticker.timestamp_ms or 0
            if symbol not in tickers or stamp >= latest_ts[symbol]:
                tickers[symbol] = ticker
                latest_ts[symbol] = stamp
        return tickers

    def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1d",
        since: Any = None,
        limit: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Candle]:
        instrument = self.market(symbol)
        until = (params or {}).get("until")
        return self.candles.fetch_candles(instrument.symbol, timeframe, since=since, until=until, limit=limit)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def _parse_order(self, raw: Mapping[str, Any]) -> Order:
        row = normalize_record(raw)
        amount = to_decimal(first(row, "quantity", "orderqty")) or Decimal("0")
        filled = to_decimal(first(row, "filledqty", "filledquantity", "matchedqty")) or Decimal("0")
        average = to_decimal(first(row, "avgprice", "averageprice"))
        ssi_type = as_text(first(row, "ordertype")).upper() or None
        side = _SIDE_ALIASES.get(as_text(first(row, "side")).lower())
        return Order(
            id=as_text(first(row, "orderid")),
            client_order_id=as_text(first(row, "requestid")) or None,
            symbol=self._symbol_for_ticker(as_text(first(row, "symbol")).upper()),
            type=canonical_order_type(ssi_type),
            side=side,
            price=to_decimal(first(row, "price")),
            amount=amount,
            filled=filled,
            remaining=max(amount - filled, Decimal("0")),
            cost=filled * average if average is not None else Decimal("0"),
            average=average,
            status=map_order_status(first(row, "status", "orderstatus")),
            timestamp_ms=self._parse_time(first(row, "createtime")),
            last_update_ms=self._parse_time(first(row, "lastmodified")),
            ssi_type=ssi_type,
            account_no=as_text(first(row, "accountno")) or None,
            message=as_text(first(row, "message")) or None,
            info=dict(raw),
        )

    def _order_from_response(self, request_record: Dict[str, Any], payload: Any) -> Order:
        record = dict(request_record)
        if isinstance(payload, dict):
            record.update({k: v for k, v in payload.items() if v is not None})
        return self._parse_order(record)

    @log_performance(LogStream.ORDERS)
    def create_order(
        self,
        symbol: str,
        order_type: str,
        side: str,
        amount: Any,
        price: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        """
        Validate locally, then submit NewOrder.

        Params:
            accountNo: overrides credentials.account_no
            clientOrderId / requestId: defaults to VN_<epoch ms>
            validDate: forwarded as-is

        Raises:
            OrderRejected subclasses, InvalidOrderParams: before any network call
            TransportError / BrokerError: upstream failure
        """
        params = dict(params or {})
        instrument = self.market(symbol)
        client_order_id = as_text(params.get("clientOrderId") or params.get("requestId")) or f"VN_{self.clock.now_ms()}"

        with LogContext(client_order_id):
            try:
                decision = self.gate.check(order_type, instrument, side, amount, price, now=self.clock.now())
                account = self._account(params)
            except (OrderRejected, InvalidOrderParams) as e:
                self.logger.warning("Order rejected locally", extra={
                    "symbol": instrument.symbol, "order_type": order_type, "side": side,
                    "amount": str(amount), "price": str(price), "reason": str(e),
                })
                raise

            body: Dict[str, Any] = {
                "symbol": instrument.ticker,
                "orderType": decision.order_type.value,
                "side": decision.side.upper(),
                "quantity": decision.quantity,
                "accountNo": account,
                "requestId": client_order_id,
            }
            if decision.price is not None and decision.price > 0:
                body["price"] = _wire_number(decision.price)
            if params.get("validDate"):
                body["validDate"] = params["validDate"]

            self.logger.info("Submitting order", extra={
                "symbol": instrument.symbol, "order_type": decision.order_type.value,
                "session": decision.session.value, "side": decision.side,
                "quantity": decision.quantity, "price": body.get("price"),
            })
            try:
                payload = self._call("new_order", body)
            except ConnectorError as e:
                self.logger.error("Order submission failed", extra={"symbol": instrument.symbol, "error": str(e)})
                raise

            order = self._order_from_response({**body, "status": "NEW"}, payload)
            self.logger.info("Order submitted", extra={
                "symbol": instrument.symbol, "order_id": order.id, "status": order.status.value,
            })
            return order

    @log_performance(LogStream.ORDERS)
    def cancel_order(self, order_id: str, symbol: Optional[str] = None,
                     params: Optional[Mapping[str, Any]] = None) -> Order:
        if not order_id:
            raise InvalidOrderParams("order id is required")
        account = self._account(params)
        body = {"orderId": order_id, "accountNo": account}
        request_record: Dict[str, Any] = {**body, "status": "CANCELLED"}
        if symbol:
            request_record["symbol"] = self.market(symbol).ticker

        with LogContext(order_id):
            payload = self._call("cancel_order", body)
            self.logger.info("Order cancelled", extra={"order_id": order_id})
        return self._order_from_response(request_record, payload)

    @log_performance(LogStream.ORDERS)
    def edit_order(self, order_id: str, symbol: str, side: str,
                   amount: Any = None, price: Any = None,
                   params: Optional[Mapping[str, Any]] = None) -> Order:
        """ModifyOrder; new price is re-checked against the band, new quantity against the lot size."""
        if not order_id:
            raise InvalidOrderParams("order id is required")
        side_norm = (side or "").strip().lower()
        if side_norm not in SIDES:
            raise InvalidOrderParams(f"side must be buy or sell, got {side!r}")
        if amount is None and price is None:
            raise InvalidOrderParams("edit_order needs a new amount or a new price")

        instrument = self.market(symbol)
        account = self._account(params)
        body: Dict[str, Any] = {"orderId": order_id, "accountNo": account}
        if price is not None:
            snapped, _ = self.gate.validate_price(price, instrument)
            body["price"] = _wire_number(snapped)
        if amount is not None:
            body["quantity"] = self.gate.validate_quantity(amount, self.gate.lot_size_for(instrument))

        with LogContext(order_id):
            payload = self._call("modify_order", body)
            self.logger.info("Order modified", extra={
                "order_id": order_id, "symbol": instrument.symbol,
                "price": body.get("price"), "quantity": body.get("quantity"),
            })
        return self._order_from_response(
            {**body, "symbol": instrument.ticker, "side": side_norm.upper(), "status": "NEW"}, payload,
        )

    def fetch_order(self, order_id: str, symbol: Optional[str] = None,
                    params: Optional[Mapping[str, Any]] = None) -> Order:
        if not order_id:
            raise InvalidOrderParams("order id is required")
        records = envelope.as_records(self._call("order_detail", {
            "orderId": order_id,
            "accountNo": self._account(params),
        }))
        if not records:
            raise BrokerError(f"order {order_id} not found")
        return self._parse_order(records[0])

    def fetch_orders(self, symbol: Optional[str] = None, since: Any = None, limit: Optional[int] = None,
                     params: Optional[Mapping[str, Any]] = None) -> List[Order]:
        query: Dict[str, Any] = {"accountNo": self._account(params)}
        if symbol:
            query["symbol"] = self.market(symbol).ticker
        since_ms = since
        if isinstance(since, datetime):
            since_ms = int(self.session_clock.to_local(since).timestamp() * 1000)
        if since_ms:
            query["fromDate"] = self._local_date(int(since_ms)).strftime("%Y-%m-%d")
        if limit and limit > 0:
            query["pageSize"] = limit

        orders = [self._parse_order(r) for r in envelope.as_records(self._call("order_history", query))]
        if limit and limit > 0:
            orders = orders[-limit:]
        return orders

    def fetch_open_orders(self, symbol: Optional[str] = None, since: Any = None, limit: Optional[int] = None,
                          params: Optional[Mapping[str, Any]] = None) -> List[Order]:
        orders = [o for o in self.fetch_orders(symbol, since, None, params) if o.is_open]
        if limit and limit > 0:
            orders = orders[-limit:]
        return orders

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def fetch_balance(self, params: Optional[Mapping[str, Any]] = None) -> Balances:
        records = envelope.as_records(self._call("account_balance", {"accountNo": self._account(params)}))
        if not records:
            raise BrokerError("empty account balance response")
        raw = records[0]
        row = normalize_record(raw)
        total = to_decimal(first(row, "totalcash")) or Decimal("0")
        free = to_decimal(first(row, "availablecash")) or Decimal("0")
        currency = as_text(first(row, "currency")) or self.config.catalog.quote_currency
        return Balances(
            assets={currency: Asset(free=free, used=total - free, total=total)},
            timestamp_ms=self.clock.now_ms(),
            info=dict(raw),
        )

    def fetch_positions(self, symbols: Optional[Sequence[str]] = None,
                        params: Optional[Mapping[str, Any]] = None) -> List[Position]:
        wanted = {self.market(s).symbol for s in symbols} if symbols else None
        records = envelope.as_records(self._call("stock_position", {"accountNo": self._account(params)}))

        positions: List[Position] = []
        for raw in records:
            row = normalize_record(raw)
            quantity = to_decimal(first(row, "quantity")) or Decimal("0")
            if quantity == 0:
                continue
            symbol = self._symbol_for_ticker(as_text(first(row, "symbol")).upper())
            if wanted is not None and symbol not in wanted:
                continue
            positions.append(Position(
                symbol=symbol,
                side="long" if quantity > 0 else "short",
                contracts=abs(quantity),
                available=to_decimal(first(row, "availableqty")),
                entry_price=to_decimal(first(row, "avgprice")),
                mark_price=to_decimal(first(row, "marketprice")),
                notional=to_decimal(first(row, "marketvalue")),
                cost=to_decimal(first(row, "costvalue")),
                unrealized_pnl=to_decimal(first(row, "unrealizedpl")),
                percentage=to_decimal(first(row, "unrealizedplpct")),
                account_no=as_text(first(row, "accountno")) or None,
                info=dict(raw),
            ))
        return positions

    def calculate_fee(self, symbol: str, side: str, amount: Any, price: Any,
                      is_maker: bool = False) -> Fee:
        qty, px = to_decimal(amount), to_decimal(price)
        if qty is None or px is None or qty < 0 or px < 0:
            raise InvalidOrderParams(f"fee needs non-negative amount and price, got {amount!r} @ {price!r}")
        rate = self.config.fees.maker if is_maker else self.config.fees.taker
        return Fee(currency=self.config.fees.currency, rate=rate, cost=qty * px * rate)

    # ------------------------------------------------------------------
    # Vietnam-specific
    # ------------------------------------------------------------------

    def fetch_company_info(self, symbol: str) -> CompanyInfo:
        instrument = self.market(symbol)
        records = envelope.as_records(self._call("company_info", {"symbol": instrument.ticker}))
        if not records:
            raise BrokerError(f"no company info for {instrument.symbol}")
        raw = records[0]
        row = normalize_record(raw)
        return CompanyInfo(
            symbol=instrument.symbol,
            name=as_text(first(row, "companyname")) or instrument.name,
            name_en=as_text(first(row, "companynameen")),
            exchange=as_text(first(row, "exchange")) or instrument.segment,
            sector=as_text(first(row, "sector")),
            industry=as_text(first(row, "industry")),
            website=as_text(first(row, "website")),
            listing_date=as_text(first(row, "listingdate")),
            charter_capital=to_decimal(first(row, "chartercapital")),
            outstanding_shares=to_int(first(row, "outstandingshares")),
            issued_shares=to_int(first(row, "issuedshares")),
            foreign_ownership=to_decimal(first(row, "foreignownership")),
            foreign_ownership_max=to_decimal(first(row, "foreignownershipmax")),
            room_available=to_int(first(row, "roomavailable")),
            info=dict(raw),
        )

    def fetch_financial_report(self, symbol: str, report_type: Optional[str] = None,
                               period: Optional[str] = None, year: Optional[int] = None) -> List[FinancialReport]:
        instrument = self.market(symbol)
        query: Dict[str, Any] = {"symbol": instrument.ticker}
        if report_type:
            query["reportType"] = report_type
        if period:
            query["period"] = period
        if year:
            query["year"] = year

        reports = []
        for raw in envelope.as_records(self._call("financial_report", query)):
            row = normalize_record(raw)
            data = first(row, "data")
            reports.append(FinancialReport(
                symbol=instrument.symbol,
                report_type=as_text(first(row, "reporttype")) or (report_type or ""),
                period=as_text(first(row, "period")) or (period or ""),
                year=to_int(first(row, "year")),
                quarter=to_int(first(row, "quarter")),
                data=dict(data) if isinstance(data, Mapping) else dict(raw),
                currency=as_text(first(row, "currency")) or self.config.catalog.quote_currency,
                unit=as_text(first(row, "unit")),
            ))
        return reports

    def fetch_trading_holidays(self, year: Optional[int] = None, apply: bool = False) -> List[TradingHoliday]:
        """
        Exchange holiday calendar for ``year`` (default: current market year).

        With ``apply=True`` the holidays are merged into the session clock used
        by the order gate.
        """
        year = year or self.clock.now_local(self.session_clock.tz).year
        holidays: List[TradingHoliday] = []
        for raw in envelope.as_records(self._call("trading_holidays", {"year": year})):
            row = normalize_record(raw)
            stamp = parse_ssi_datetime(as_text(first(row, "date", "holidaydate")), "", self.session_clock.tz)
            if stamp is None:
                continue
            holidays.append(TradingHoliday(
                date=self._local_date(stamp),
                name=as_text(first(row, "name")),
                description=as_text(first(row, "description")),
            ))
        holidays.sort(key=lambda h: h.date)

        if apply and holidays:
            self.session_clock = self.session_clock.with_holidays(h.date for h in holidays)
            self.gate = OrderGate(self.session_clock, self.config.order_rules)
            get_logger(LogStream.SYSTEM).info("Trading holidays applied", extra={"year": year, "count": len(holidays)})
        return holidays

    def session_state(self, now: Optional[datetime] = None) -> SessionState:
        return self.session_clock.session_at(now or self.clock.now())
