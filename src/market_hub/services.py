"""Service graph shared by the API and the CLI."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

import httpx

from market_hub.core.config import HubConfig
from market_hub.core.exceptions import UniverseLoadError
from market_hub.gateway.bus import RequestBus
from market_hub.gateway.cache import TTLStore
from market_hub.gateway.manager import ProviderManager
from market_hub.news.aggregator import NewsAggregator
from market_hub.providers import create_providers
from market_hub.providers.base import USER_AGENT, ProviderAdapter
from market_hub.scanner.engine import ScannerEngine
from market_hub.symbols.resolver import TickerResolver
from market_hub.symbols.universe import SymbolUniverse

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every long-lived component, wired together."""

    config: HubConfig
    client: httpx.AsyncClient
    manager: ProviderManager
    cache: TTLStore
    bus: RequestBus
    universe: SymbolUniverse
    resolver: TickerResolver
    news: NewsAggregator
    scanner: ScannerEngine
    _tasks: list[asyncio.Task] = field(default_factory=list)

    async def start(self, background: bool = True) -> None:
        """Begin the universe refresh and cache eviction loops.

        With ``background=False`` the first universe load is awaited
        instead (CLI use); a failure there is logged, not raised.
        """
        if background:
            self._tasks.append(self.universe.start())
            self._tasks.append(asyncio.create_task(self.cache.cleanup_loop()))
            return
        try:
            await self.universe.refresh(force=False)
        except UniverseLoadError as e:
            logger.warning("Continuing without a symbol universe: %s", e)

    async def close(self) -> None:
        await self.universe.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.bus.close()
        await self.manager.close()
        await self.client.aclose()


def create_client(config: HubConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=httpx.Timeout(config.timeouts.symbols),
        follow_redirects=True,
    )


def build_services(
    config: HubConfig | None = None,
    adapters: Sequence[ProviderAdapter] | None = None,
    client: httpx.AsyncClient | None = None,
) -> Services:
    """Wire the service graph.

    ``adapters`` overrides the provider set built from config, which is
    how tests plug in fakes. The universe doubles as the manager's symbol
    filter, so quotes are only served for known symbols once it loads.
    """
    config = config or HubConfig()
    client = client or create_client(config)
    if adapters is None:
        adapters = create_providers(config, client=client)

    manager = ProviderManager(adapters, config)
    cache = TTLStore(config.cache)
    bus = RequestBus(manager, cache, config.bus)
    universe = SymbolUniverse(bus, config.universe)
    manager.symbol_filter = universe.accepts
    resolver = TickerResolver(universe)
    news = NewsAggregator(bus, resolver)
    scanner = ScannerEngine(bus, news, config.scanner)

    return Services(
        config=config,
        client=client,
        manager=manager,
        cache=cache,
        bus=bus,
        universe=universe,
        resolver=resolver,
        news=news,
        scanner=scanner,
    )
