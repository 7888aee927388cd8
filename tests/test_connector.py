"""
VietnamConnector - canonical exchange operations over SSI FastConnect.

INVARIANTS:
    Orders failing local validation never reach the network.
    Every upstream record is normalised into the canonical models.
    Unsupported capabilities raise CapabilityNotImplemented, never a silent no-op.

TESTS:
    1.  create_order: wire body, integral prices as ints, MTL for market orders.
    2.  create_order: MarketClosed / missing account rejected before any call.
    3.  cancel_order / edit_order bodies; edited price snapped and band-checked.
    4.  fetch_order / fetch_orders / fetch_open_orders with status mapping.
    5.  fetch_balance and fetch_positions (flat rows skipped, symbol filter).
    6.  calculate_fee uses the maker/taker rate.
    7.  fetch_ticker / fetch_tickers: latest row, change and percentage.
    8.  Company info, financial reports, trading holidays (applied to the gate).
    9.  Stubs and capability reporting.
   10.  Factory and CLI.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from vnconnector import __main__ as cli
from vnconnector.brokers import (
    ExchangeId,
    OrderSide,
    OrderStatus,
    VietnamConnector,
    create_exchange,
)
from vnconnector.brokers.base import UNSUPPORTED_BY_DEFAULT
from vnconnector.config import SessionState
from vnconnector.errors import (
    BrokerError,
    CapabilityNotImplemented,
    ConnectorConstructionError,
    InvalidOrderParams,
    InvalidQuantity,
    MarketClosed,
    PriceOutOfBand,
    UnknownExchange,
)

from tests.fakes import FakeTransport, envelope_body

ICT = ZoneInfo("Asia/Ho_Chi_Minh")
NOW_MS = 1767582000000  # 2026-01-05 03:00 UTC


@pytest.fixture
def connector(config, clock, catalog_transport):
    return VietnamConnector(config, transport=catalog_transport, clock=clock)


def price_row(day, close, prior, symbol="VNM"):
    return {"Symbol": symbol, "TradingDate": day, "OpenPrice": prior, "HighestPrice": close + 100,
            "LowestPrice": prior - 100, "ClosePrice": close, "PriorClosePrice": prior,
            "TotalVolume": 1000, "TotalValue": close * 1000}


class TestCreateOrder:

    def test_limit_order_body(self, connector, catalog_transport):
        catalog_transport.script("new_order", envelope_body({"orderId": "O1"}))

        order = connector.create_order("HOSE:VNM/VND", "limit", "buy", 200, 70000.0)

        (body,) = catalog_transport.calls_to("new_order")
        assert body == {
            "symbol": "VNM",
            "orderType": "LO",
            "side": "BUY",
            "quantity": 200,
            "accountNo": "0001234",
            "requestId": f"VN_{NOW_MS}",
            "price": 70000,
        }
        assert isinstance(body["price"], int)
        assert order.id == "O1"
        assert order.symbol == "HOSE:VNM/VND"
        assert order.type == "limit"
        assert order.side == OrderSide.BUY
        assert order.status == OrderStatus.OPEN
        assert order.amount == Decimal("200")
        assert order.remaining == Decimal("200")
        assert order.client_order_id == f"VN_{NOW_MS}"

    def test_limit_price_snapped(self, connector, catalog_transport):
        catalog_transport.script("new_order", envelope_body({"orderId": "O1"}))
        connector.create_order("VNM", "limit", "sell", 100, "70049")
        assert catalog_transport.calls_to("new_order")[0]["price"] == 70000

    def test_market_order_is_mtl_without_price(self, connector, catalog_transport):
        catalog_transport.script("new_order", envelope_body({"orderId": "O2"}))

        order = connector.create_order("VNM", "market", "sell", 100, 70000)

        body = catalog_transport.calls_to("new_order")[0]
        assert body["orderType"] == "MTL"
        assert "price" not in body
        assert order.type == "market"
        assert order.side == OrderSide.SELL

    def test_client_order_id_and_account_override(self, connector, catalog_transport):
        catalog_transport.script("new_order", envelope_body({"orderId": "O3"}))

        connector.create_order("VNM", "limit", "buy", 100, 70000,
                               params={"clientOrderId": "my-1", "accountNo": "0009999", "validDate": "05/01/2026"})

        body = catalog_transport.calls_to("new_order")[0]
        assert body["requestId"] == "my-1"
        assert body["accountNo"] == "0009999"
        assert body["validDate"] == "05/01/2026"

    def test_lunch_rejected_without_network(self, connector, catalog_transport, clock):
        clock.set_time(datetime(2026, 1, 5, 5, 0, tzinfo=timezone.utc))  # 12:00 ICT
        with pytest.raises(MarketClosed):
            connector.create_order("VNM", "limit", "buy", 100, 70000)
        assert catalog_transport.calls_to("new_order") == []

    def test_out_of_band_rejected(self, connector, catalog_transport):
        with pytest.raises(PriceOutOfBand):
            connector.create_order("VNM", "limit", "buy", 100, 80000)
        assert catalog_transport.calls_to("new_order") == []

    def test_missing_account(self, config, clock, catalog_transport):
        connector = VietnamConnector(config.with_credentials(account_no=None), catalog_transport, clock)
        with pytest.raises(InvalidOrderParams):
            connector.create_order("VNM", "limit", "buy", 100, 70000)
        assert catalog_transport.calls_to("new_order") == []

    def test_upstream_rejection_propagates(self, connector, catalog_transport):
        catalog_transport.script("new_order", envelope_body(None, status=400, message="Insufficient buying power"))
        with pytest.raises(BrokerError, match="Insufficient"):
            connector.create_order("VNM", "limit", "buy", 100, 70000)


class TestCancelAndEdit:

    def test_cancel(self, connector, catalog_transport):
        catalog_transport.script("cancel_order", envelope_body({}))

        order = connector.cancel_order("O1", "VNM")

        assert catalog_transport.calls_to("cancel_order") == [{"orderId": "O1", "accountNo": "0001234"}]
        assert order.id == "O1"
        assert order.symbol == "HOSE:VNM/VND"
        assert order.status == OrderStatus.CANCELED

    def test_cancel_needs_id(self, connector):
        with pytest.raises(InvalidOrderParams):
            connector.cancel_order("")

    def test_edit_body(self, connector, catalog_transport):
        catalog_transport.script("modify_order", envelope_body({}))

        order = connector.edit_order("O1", "VNM", "buy", amount=300, price="70049")

        assert catalog_transport.calls_to("modify_order") == [
            {"orderId": "O1", "accountNo": "0001234", "price": 70000, "quantity": 300},
        ]
        assert order.side == OrderSide.BUY
        assert order.price == Decimal("70000")

    def test_edit_needs_change(self, connector):
        with pytest.raises(InvalidOrderParams):
            connector.edit_order("O1", "VNM", "buy")

    def test_edit_validates(self, connector, catalog_transport):
        with pytest.raises(InvalidQuantity):
            connector.edit_order("O1", "VNM", "buy", amount=150)
        with pytest.raises(PriceOutOfBand):
            connector.edit_order("O1", "VNM", "buy", price=90000)
        with pytest.raises(InvalidOrderParams):
            connector.edit_order("O1", "VNM", "hold", amount=100)
        assert catalog_transport.calls_to("modify_order") == []


class TestOrderQueries:

    def test_fetch_order(self, connector, catalog_transport):
        connector.load_markets()
        catalog_transport.script("order_detail", envelope_body({
            "orderId": "O1", "requestId": "VN_1", "symbol": "VNM", "side": "S", "orderType": "LO",
            "price": 70000, "quantity": 200, "filledQty": 100, "avgPrice": 70100,
            "status": "PartiallyFilled", "accountNo": "0001234",
        }))

        order = connector.fetch_order("O1")

        assert catalog_transport.calls_to("order_detail") == [{"orderId": "O1", "accountNo": "0001234"}]
        assert order.symbol == "HOSE:VNM/VND"
        assert order.side == OrderSide.SELL
        assert order.status == OrderStatus.PARTIALLY_FILLED
        assert order.filled == Decimal("100")
        assert order.remaining == Decimal("100")
        assert order.cost == Decimal("7010000")
        assert order.is_open

    def test_fetch_order_missing(self, connector, catalog_transport):
        catalog_transport.script("order_detail", envelope_body([]))
        with pytest.raises(BrokerError, match="not found"):
            connector.fetch_order("O404")

    def test_fetch_orders_and_open_filter(self, connector, catalog_transport):
        catalog_transport.script("order_history", envelope_body([
            {"orderId": "1", "symbol": "VNM", "quantity": 100, "status": "New"},
            {"orderId": "2", "symbol": "VNM", "quantity": 100, "filledQty": 100, "status": "Filled"},
            {"orderId": "3", "symbol": "VNM", "quantity": 100, "status": "Cancelled"},
            {"orderId": "4", "symbol": "VNM", "quantity": 100, "status": "Weird"},
        ]))

        orders = connector.fetch_orders("VNM", since=datetime(2026, 1, 2, tzinfo=ICT), limit=10)
        open_orders = connector.fetch_open_orders("VNM")

        query = catalog_transport.calls_to("order_history")[0]
        assert query == {"accountNo": "0001234", "symbol": "VNM", "fromDate": "2026-01-02", "pageSize": 10}
        assert [o.status for o in orders] == [
            OrderStatus.OPEN, OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.UNKNOWN,
        ]
        assert [o.id for o in open_orders] == ["1"]

    def test_fetch_orders_limit_keeps_latest(self, connector, catalog_transport):
        catalog_transport.script("order_history", envelope_body([
            {"orderId": str(i), "symbol": "VNM", "quantity": 100, "status": "New"} for i in range(5)
        ]))
        assert [o.id for o in connector.fetch_orders(limit=2)] == ["3", "4"]


class TestAccount:

    def test_balance(self, connector, catalog_transport, clock):
        catalog_transport.script("account_balance", envelope_body({"totalCash": 1000000, "availableCash": 400000}))

        balances = connector.fetch_balance()

        vnd = balances["VND"]
        assert (vnd.free, vnd.used, vnd.total) == (Decimal("400000"), Decimal("600000"), Decimal("1000000"))
        assert balances.timestamp_ms == NOW_MS
        assert balances.get("USD") is None

    def test_empty_balance(self, connector, catalog_transport):
        catalog_transport.script("account_balance", envelope_body(None))
        with pytest.raises(BrokerError):
            connector.fetch_balance()

    def test_positions(self, connector, catalog_transport):
        connector.load_markets()
        catalog_transport.script("stock_position", envelope_body([
            {"symbol": "VNM", "quantity": 500, "availableQty": 300, "avgPrice": 68000, "marketPrice": 70000},
            {"symbol": "SHS", "quantity": 100},
            {"symbol": "FPT", "quantity": 0},
        ]))

        positions = connector.fetch_positions()
        filtered = connector.fetch_positions(["VNM"])

        assert [p.symbol for p in positions] == ["HOSE:VNM/VND", "HNX:SHS/VND"]
        vnm = positions[0]
        assert vnm.side == "long"
        assert vnm.contracts == Decimal("500")
        assert vnm.available == Decimal("300")
        assert vnm.entry_price == Decimal("68000")
        assert [p.symbol for p in filtered] == ["HOSE:VNM/VND"]

    def test_fee(self, connector):
        fee = connector.calculate_fee("VNM", "buy", 100, 25000)
        assert fee.currency == "VND"
        assert fee.rate == Decimal("0.0015")
        assert fee.cost == Decimal("3750")

    def test_fee_rejects_negative(self, connector):
        with pytest.raises(InvalidOrderParams):
            connector.calculate_fee("VNM", "buy", -1, 25000)


class TestMarketData:

    def test_ticker_uses_latest_row(self, connector, catalog_transport):
        catalog_transport.script("daily_stock_price", envelope_body([
            price_row("02/01/2026", 69000, 68000),
            price_row("05/01/2026", 70380, 69000),
        ]))

        ticker = connector.fetch_ticker("VNM")

        assert catalog_transport.calls_to("daily_stock_price") == [{"symbol": "VNM", "market": "HOSE"}]
        assert ticker.symbol == "HOSE:VNM/VND"
        assert ticker.last == Decimal("70380")
        assert ticker.change == Decimal("1380")
        assert ticker.percentage == Decimal("2")
        assert ticker.base_volume == Decimal("1000")

    def test_ticker_without_rows(self, connector, catalog_transport):
        catalog_transport.script("daily_stock_price", envelope_body([]))
        with pytest.raises(BrokerError):
            connector.fetch_ticker("VNM")

    def test_tickers(self, connector, catalog_transport):
        catalog_transport.script("daily_stock_price", envelope_body([
            price_row("05/01/2026", 70000, 70000),
            price_row("05/01/2026", 15500, 15000, symbol="SHS"),
            price_row("05/01/2026", 1, 1, symbol="ZZZ"),
        ]))

        tickers = connector.fetch_tickers(["VNM", "HNX:SHS"])

        assert catalog_transport.calls_to("daily_stock_price") == [{"symbols": "VNM,SHS"}]
        assert set(tickers) == {"HOSE:VNM/VND", "HNX:SHS/VND"}
        assert tickers["HNX:SHS/VND"].change == Decimal("500")

    def test_tickers_need_symbols(self, connector):
        with pytest.raises(ValueError):
            connector.fetch_tickers([])

    def test_ohlcv_delegates_to_candle_fetcher(self, connector, catalog_transport):
        catalog_transport.script("daily_ohlc", envelope_body([
            {"TradingDate": "02/01/2026", "Open": 1, "High": 2, "Low": 1, "Close": 2, "Volume": 10},
        ]))

        candles = connector.fetch_ohlcv("VNM", "1d", limit=10)

        assert [c.close for c in candles] == [2.0]
        assert catalog_transport.calls_to("daily_ohlc")[0]["Symbol"] == "VNM"


class TestVietnamSpecific:

    def test_company_info(self, connector, catalog_transport):
        catalog_transport.script("company_info", envelope_body({
            "CompanyName": "Vinamilk", "Sector": "Consumer Staples", "OutstandingShares": "2089955445",
            "ForeignOwnership": 52.1,
        }))

        info = connector.fetch_company_info("VNM")

        assert catalog_transport.calls_to("company_info") == [{"symbol": "VNM"}]
        assert info.name == "Vinamilk"
        assert info.exchange == "HOSE"
        assert info.outstanding_shares == 2089955445
        assert info.foreign_ownership == Decimal("52.1")

    def test_company_info_missing(self, connector, catalog_transport):
        catalog_transport.script("company_info", envelope_body(None))
        with pytest.raises(BrokerError):
            connector.fetch_company_info("VNM")

    def test_financial_report(self, connector, catalog_transport):
        catalog_transport.script("financial_report", envelope_body([
            {"ReportType": "BalanceSheet", "Period": "Q", "Year": 2025, "Quarter": 3,
             "Data": {"TotalAssets": 1000}, "Unit": "million"},
        ]))

        (report,) = connector.fetch_financial_report("VNM", "BalanceSheet", "Q", 2025)

        assert catalog_transport.calls_to("financial_report") == [
            {"symbol": "VNM", "reportType": "BalanceSheet", "period": "Q", "year": 2025},
        ]
        assert (report.year, report.quarter) == (2025, 3)
        assert report.data == {"TotalAssets": 1000}
        assert report.currency == "VND"

    def test_holidays_applied_to_gate(self, connector, catalog_transport):
        catalog_transport.script("trading_holidays", envelope_body([
            {"Date": "30/04/2026", "Name": "Reunification Day"},
            {"Date": "05/01/2026", "Name": "Exchange closure"},
            {"Date": "soon", "Name": "Unparseable"},
        ]))
        assert connector.session_state() == SessionState.MORNING

        holidays = connector.fetch_trading_holidays(apply=True)

        assert catalog_transport.calls_to("trading_holidays") == [{"year": 2026}]
        assert [h.date for h in holidays] == [date(2026, 1, 5), date(2026, 4, 30)]
        assert connector.session_state() == SessionState.CLOSED
        with pytest.raises(MarketClosed):
            connector.create_order("VNM", "limit", "buy", 100, 70000)

    def test_holidays_not_applied_by_default(self, connector, catalog_transport):
        catalog_transport.script("trading_holidays", envelope_body([{"Date": "05/01/2026"}]))
        connector.fetch_trading_holidays(2026)
        assert connector.session_state() == SessionState.MORNING

    def test_session_state_at(self, connector):
        assert connector.session_state(datetime(2026, 1, 5, 14, 35)) == SessionState.CLOSING


STUB_ARGS = {
    "fetch_order_book": ("VNM",),
    "watch_order_books": (["VNM"],),
    "unwatch_order_books": (["VNM"],),
    "watch_ohlcvs": ([["VNM", "1m"]],),
    "unwatch_ohlcvs": ([["VNM", "1m"]],),
    "watch_mark_prices": (["VNM"],),
    "unwatch_mark_prices": (["VNM"],),
    "watch_trades": (["VNM"],),
    "unwatch_trades": (["VNM"],),
    "watch_my_trades": (),
    "watch_balance": (),
    "watch_positions": (),
    "watch_account_config": (),
    "set_leverage": (Decimal("2"),),
}


class TestCapabilities:

    def test_every_stub_is_covered(self):
        assert set(STUB_ARGS) == set(UNSUPPORTED_BY_DEFAULT)

    @pytest.mark.parametrize("name", sorted(STUB_ARGS))
    def test_stub_raises(self, connector, catalog_transport, name):
        with pytest.raises(CapabilityNotImplemented) as exc:
            getattr(connector, name)(*STUB_ARGS[name])
        assert exc.value.capability == name
        assert isinstance(exc.value, NotImplementedError)
        assert catalog_transport.calls == []

    def test_capabilities(self, connector):
        caps = connector.capabilities()
        assert "create_order" in caps
        assert "fetch_company_info" in caps
        assert "set_leverage" not in caps
        assert connector.has("fetch_ohlcv")
        assert not connector.has("watch_trades")
        assert not connector.has("no_such_thing")


class TestFactory:

    def test_string_id(self, clock):
        t = FakeTransport()
        exchange = create_exchange(" Vietnam ", {"consumerID": "cid", "consumerSecret": "s"}, transport=t, clock=clock)
        assert isinstance(exchange, VietnamConnector)
        assert exchange.config.credentials.consumer_id == "cid"

    def test_config_instance(self, config, clock):
        exchange = create_exchange(ExchangeId.VIETNAM, config, transport=FakeTransport(), clock=clock)
        assert exchange.config is config

    def test_unknown_exchange(self):
        with pytest.raises(UnknownExchange):
            create_exchange("binance", {})

    def test_bad_options(self):
        with pytest.raises(ConnectorConstructionError):
            create_exchange("vietnam", {"consumerID": "cid", "consumerSecret": "s", "bogus": 1})

    def test_missing_credentials(self, clock):
        with pytest.raises(ConnectorConstructionError, match="consumerID"):
            create_exchange("vietnam", {"accountNo": "1"}, transport=FakeTransport(), clock=clock)
        exchange = create_exchange("vietnam", {}, require_credentials=False, transport=FakeTransport(), clock=clock)
        assert not exchange.config.credentials.is_complete


class TestCli:

    def test_session_command(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
        (tmp_path / "config.yaml").write_text("logging:\n  file_logging: false\n", encoding="utf-8")

        rc = cli.main(["--config", str(tmp_path), "session", "--at", "2026-01-05T10:00"])

        out = capsys.readouterr().out
        assert rc == 0
        assert "session:  morning" in out
        assert "LO, MTL" in out

    def test_invalid_config(self, tmp_path, capsys):
        (tmp_path / "config.yaml").write_text("- not a mapping\n", encoding="utf-8")
        assert cli.main(["--config", str(tmp_path), "session"]) == 1
        assert "invalid configuration" in capsys.readouterr().err
