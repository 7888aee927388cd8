"""
MarketCatalog - paginated multi-segment instrument catalog.

INVARIANTS:
    Readers always see one complete snapshot (old or new, never partial).
    A bare ticker listed on several segments is ambiguous.
    Detail failures degrade to base-listing data; base failures keep the
    previously published snapshot.

TESTS:
    1.  Base and detail listings merge (tick, lot, reference price).
    2.  Lookup by symbol, raw id and bare ticker (case-insensitive).
    3.  Duplicate ticker across segments -> AmbiguousSymbol with candidates.
    4.  Pagination stops on a short page and at the page cap.
    5.  Detail failure -> base-only instrument with DECIMAL_PLACES precision.
    6.  Base failure -> error raised, previous snapshot kept.
    7.  Rebuild is idempotent.
    8.  Readers are not blocked by a slow rebuild.
"""

import threading
import time
from decimal import Decimal

import pytest

from vnconnector.errors import AmbiguousSymbol, BrokerError, SymbolNotFound, TransportError
from vnconnector.market import MarketCatalog, PrecisionMode

from tests.fakes import FakeTransport, details_page, envelope_body, security


@pytest.fixture
def catalog(config, catalog_transport):
    return MarketCatalog(config, catalog_transport)


class TestMerge:

    def test_instruments_built_from_both_listings(self, catalog):
        catalog.rebuild()

        ssi = catalog.resolve("HOSE:SSI/VND")
        assert ssi.raw_id == "HOSE:SSI"
        assert ssi.ticker == "SSI"
        assert ssi.segment == "HOSE"
        assert ssi.price_tick == Decimal("100")
        assert ssi.precision_mode == PrecisionMode.TICK_SIZE
        assert ssi.lot_size == 100
        assert ssi.reference_price == Decimal("25000")
        assert ssi.name == "SSI Corp"
        assert ssi.info["segment"] == "HOSE"

    def test_upstream_band_carried(self, catalog):
        catalog.rebuild()
        vnm = catalog.resolve("HOSE:VNM")
        assert vnm.ceiling == Decimal("74900")
        assert vnm.floor == Decimal("65100")

    def test_base_only_instrument_uses_decimal_places(self, catalog):
        catalog.rebuild()
        hnx_ssi = catalog.resolve("HNX:SSI")
        assert hnx_ssi.price_tick == Decimal("0")
        assert hnx_ssi.precision_mode == PrecisionMode.DECIMAL_PLACES
        assert not hnx_ssi.has_price_tick

    def test_detail_only_tickers_dropped(self, config):
        t = FakeTransport()
        t.script("securities", envelope_body([security("AAA")]))
        t.script("securities_details", details_page({"Symbol": "AAA", "TickIncrement1": 10},
                                                    {"Symbol": "ZZZ", "TickIncrement1": 10}))
        catalog = MarketCatalog(config, t)

        catalog.rebuild(segments=["HOSE"])

        assert [i.ticker for i in catalog.instruments()] == ["AAA"]

    def test_field_case_variants(self, config):
        t = FakeTransport()
        t.script("securities", envelope_body([{"symbol": "abc", "StockName": "Cong ty ABC"}]))
        t.script("securities_details", details_page({"SYMBOL": "ABC", "tickIncrement1": "10", "lotSize": "100"}))
        catalog = MarketCatalog(config, t)

        catalog.rebuild(segments=["UPCOM"])

        inst = catalog.resolve("UPCOM:ABC")
        assert inst.price_tick == Decimal("10")
        assert inst.name == "Cong ty ABC"


class TestResolve:

    def test_lookup_forms(self, catalog):
        catalog.rebuild()
        assert catalog.resolve("hose:vnm/vnd").ticker == "VNM"
        assert catalog.resolve(" HOSE:VNM ").ticker == "VNM"
        assert catalog.resolve("vnm").raw_id == "HOSE:VNM"

    def test_ambiguous_bare_ticker(self, catalog):
        catalog.rebuild()
        with pytest.raises(AmbiguousSymbol) as exc:
            catalog.resolve("SSI")
        assert exc.value.candidates == ("HNX:SSI", "HOSE:SSI")

    @pytest.mark.parametrize("key", ["", "XYZ", "HOSE:XYZ", "HOSE:SSI/USD"])
    def test_not_found(self, catalog, key):
        catalog.rebuild()
        with pytest.raises(SymbolNotFound):
            catalog.resolve(key)

    def test_empty_before_first_rebuild(self, catalog):
        assert not catalog.is_loaded
        assert len(catalog) == 0
        with pytest.raises(SymbolNotFound):
            catalog.resolve("VNM")


class TestPagination:

    def test_short_page_stops(self, catalog, catalog_transport):
        catalog.rebuild(segments=["HOSE"])
        pages = [p["pageIndex"] for p in catalog_transport.calls_to("securities")]
        # page_size=2: page 1 full, page 2 empty
        assert pages == [1, 2]
        assert catalog_transport.calls_to("securities")[0] == {"market": "HOSE", "pageIndex": 1, "pageSize": 2}

    def test_page_cap(self, config):
        t = FakeTransport()
        counter = iter(range(1000))

        def endless(params):
            n = next(counter)
            return envelope_body([security(f"T{n}A"), security(f"T{n}B")])

        t.script("securities", endless)
        t.script("securities_details", envelope_body([]))
        catalog = MarketCatalog(config, t)

        catalog.rebuild(segments=["HOSE"])

        assert len(t.calls_to("securities")) == config.catalog.max_pages
        assert len(catalog) == 2 * config.catalog.max_pages


class TestFailures:

    def test_details_failure_degrades(self, config):
        t = FakeTransport()
        t.script("securities", envelope_body([security("VNM")]))
        t.script("securities_details", TransportError("details down", status_code=500))
        catalog = MarketCatalog(config, t)

        catalog.rebuild(segments=["HOSE"])

        vnm = catalog.resolve("VNM")
        assert vnm.precision_mode == PrecisionMode.DECIMAL_PLACES
        assert vnm.reference_price is None

    def test_base_failure_keeps_previous_snapshot(self, config, catalog_transport):
        catalog = MarketCatalog(config, catalog_transport)
        catalog.rebuild()
        before = catalog.snapshot

        catalog_transport.script("securities", envelope_body(None, status=500, message="maintenance"))
        with pytest.raises(BrokerError, match="maintenance"):
            catalog.rebuild()

        assert catalog.snapshot is before
        assert catalog.resolve("VNM").ticker == "VNM"

    def test_rebuild_idempotent(self, catalog):
        first = catalog.rebuild()
        second = catalog.rebuild()
        assert set(first.by_symbol) == set(second.by_symbol)
        assert first.by_symbol["HOSE:VNM/VND"] == second.by_symbol["HOSE:VNM/VND"]


class TestConcurrency:

    def test_readers_see_old_snapshot_during_rebuild(self, config, catalog_transport):
        catalog = MarketCatalog(config, catalog_transport)
        catalog.rebuild()

        release = threading.Event()
        started = threading.Event()

        def slow_securities(params):
            started.set()
            release.wait(timeout=5)
            return envelope_body([security("NEW")]) if params["pageIndex"] == 1 else envelope_body([])

        catalog_transport.script("securities", slow_securities)
        builder = threading.Thread(target=catalog.rebuild, kwargs={"segments": ["HOSE"]})
        builder.start()
        assert started.wait(timeout=5)

        t0 = time.monotonic()
        assert catalog.resolve("VNM").ticker == "VNM"
        assert time.monotonic() - t0 < 1.0

        release.set()
        builder.join(timeout=5)
        assert catalog.resolve("HOSE:NEW").ticker == "NEW"
        with pytest.raises(SymbolNotFound):
            catalog.resolve("HOSE:VNM")
