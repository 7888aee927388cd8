# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from vnconnector.config import ConnectorConfig
from vnconnector.time.clock import FixedClock

from tests.fakes import FakeTransport, details_page, envelope_body, security


# -------------------------
# Fixtures
# -------------------------

@pytest.fixture
def config() -> ConnectorConfig:
    return ConnectorConfig.from_options({
        "consumerID": "cid",
        "consumerSecret": "secret",
        "accountNo": "0001234",
        "catalog": {"segments": ["HOSE", "HNX"], "page_size": 2, "max_pages": 5},
        "logging": {"file_logging": False},
    })


@pytest.fixture
def clock() -> FixedClock:
    # Monday 2026-01-05 10:00 ICT (MORNING session)
    return FixedClock(datetime(2026, 1, 5, 3, 0, tzinfo=timezone.utc))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def catalog_transport() -> FakeTransport:
    """HOSE lists SSI (tick 100 via details) and VNM; HNX lists SHS and a duplicate SSI."""
    t = FakeTransport()

    def securities(params):
        if params["pageIndex"] > 1:
            return envelope_body([])
        if params["market"] == "HOSE":
            return envelope_body([security("SSI"), security("VNM")])
        return envelope_body([security("SHS"), security("SSI")])

    def details(params):
        if params["pageIndex"] > 1:
            return envelope_body([])
        if params["market"] == "HOSE":
            return details_page(
                {"Symbol": "SSI", "TickIncrement1": 100, "LotSize": 100, "RefPrice": 25000},
                {"Symbol": "VNM", "TickIncrement1": 100, "LotSize": 100, "RefPrice": 70000,
                 "CeilingPrice": 74900, "FloorPrice": 65100},
            )
        return details_page(
            {"Symbol": "SHS", "TickIncrement1": 100, "LotSize": 100, "RefPrice": 15000},
        )

    t.script("securities", securities)
    t.script("securities_details", details)
    return t
