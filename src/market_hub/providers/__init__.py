"""Upstream provider adapters.

Built-in adapters:

- ``FMPProvider``: Financial Modeling Prep (quotes, OHLC, news, symbols).
- ``FinnhubProvider``: Finnhub (quotes, OHLC, news, symbols).
- ``AlphaVantageProvider``: Alpha Vantage (quotes, OHLC, news).
- ``YahooRSSProvider``: Yahoo Finance RSS headlines (news).

Adding a provider: subclass ``HttpProvider``, declare its capabilities,
implement the matching ``fetch_*`` methods, and register it below.
"""

from __future__ import annotations

import logging

import httpx

from market_hub.core.config import HubConfig
from market_hub.providers.alphavantage import AlphaVantageProvider
from market_hub.providers.base import HttpProvider, ProviderAdapter
from market_hub.providers.finnhub import FinnhubProvider
from market_hub.providers.fmp import FMPProvider
from market_hub.providers.yahoo_rss import YahooRSSProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[HttpProvider]] = {
    "fmp": FMPProvider,
    "finnhub": FinnhubProvider,
    "alphavantage": AlphaVantageProvider,
    "yahoo_rss": YahooRSSProvider,
}


def create_providers(
    config: HubConfig,
    client: httpx.AsyncClient | None = None,
) -> list[HttpProvider]:
    """Instantiate adapters for every active provider, in priority order.

    Providers that need a key and have none are skipped silently.
    """
    adapters: list[HttpProvider] = []
    for name, provider_config in config.active_providers():
        cls = PROVIDER_CLASSES.get(name)
        if cls is None:
            continue
        adapters.append(cls(provider_config, client=client, timeout=config.timeouts.symbols))
    logger.info("Active providers: %s", ", ".join(a.provider_id for a in adapters) or "none")
    return adapters


__all__ = [
    "ProviderAdapter",
    "HttpProvider",
    "FMPProvider",
    "FinnhubProvider",
    "AlphaVantageProvider",
    "YahooRSSProvider",
    "PROVIDER_CLASSES",
    "create_providers",
]
