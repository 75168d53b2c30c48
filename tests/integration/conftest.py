"""Integration test fixtures: the full app over mocked upstream HTTP."""

from __future__ import annotations

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from market_hub.api.app import create_app
from market_hub.core.config import HubConfig

FMP = "https://financialmodelingprep.com/api/v3"
FINNHUB = "https://finnhub.io/api/v1"

FMP_LISTING = [
    {"symbol": "AAPL", "name": "Apple Inc.", "exchangeShortName": "NASDAQ", "type": "stock"},
    {"symbol": "MSFT", "name": "Microsoft Corporation", "exchangeShortName": "NASDAQ", "type": "stock"},
    {"symbol": "TSLA", "name": "Tesla, Inc.", "exchangeShortName": "NASDAQ", "type": "stock"},
]

FINNHUB_LISTING = [
    {"symbol": "AAPL", "description": "APPLE INC", "mic": "XNAS", "type": "Common Stock"},
    {"symbol": "NVDA", "description": "NVIDIA CORP", "mic": "XNAS", "type": "Common Stock"},
]


@pytest.fixture
def upstream():
    """Mocked upstream APIs; tests add the routes they exercise."""
    with respx.mock(assert_all_called=False) as router:
        router.get(f"{FMP}/stock/list").mock(return_value=httpx.Response(200, json=FMP_LISTING))
        router.get(f"{FINNHUB}/stock/symbol").mock(
            return_value=httpx.Response(200, json=FINNHUB_LISTING)
        )
        yield router


@pytest.fixture
def hub(upstream):
    """A running app with FMP, Finnhub and Yahoo RSS enabled and the universe loaded."""
    config = HubConfig(
        providers={"fmp": {"api_key": "fmp-key"}, "finnhub": {"api_key": "fh-key"}}
    )
    app = create_app(config=config)
    with TestClient(app) as client:
        client.portal.call(app.state.services.universe.refresh)
        yield client
