"""Request bus: cache lookup, request coalescing, and quote batching."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Generic, Mapping, Sequence, TypeVar

from market_hub.core.config import BusConfig
from market_hub.core.models import (
    CacheCategory,
    Candle,
    ErrorInfo,
    Interval,
    NewsItem,
    NewsScope,
    ProviderHealth,
    Quote,
    SymbolRecord,
)
from market_hub.gateway.cache import TTLStore
from market_hub.gateway.manager import ProviderManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BusResult(Generic[T]):
    """Data plus diagnostics. ``stale`` marks data served from expired cache."""

    data: T
    errors: tuple[ErrorInfo, ...] = ()
    stale: bool = False


@dataclass(frozen=True)
class NewsBatch:
    items: tuple[NewsItem, ...]
    counts: Mapping[str, int]


@dataclass(frozen=True)
class OhlcSeries:
    """A cached candle series and the ``limit`` it was fetched with."""

    requested: int
    candles: tuple[Candle, ...]

    def covers(self, limit: int) -> bool:
        return limit <= self.requested

    def tail(self, limit: int) -> tuple[Candle, ...]:
        return self.candles[-limit:] if limit > 0 else ()


def merge_errors(results: Sequence[BusResult]) -> tuple[ErrorInfo, ...]:
    seen: dict[tuple, ErrorInfo] = {}
    for result in results:
        for error in result.errors:
            seen.setdefault((error.provider, error.kind, error.message, error.stale), error)
    return tuple(seen.values())


class RequestBus:
    """Sits in front of the provider manager.

    Coalescing: concurrent requests with the same ``(method, params)`` key
    share one in-flight task. Callers await it through ``asyncio.shield``,
    so a cancelled caller detaches while the upstream call carries on and
    still populates the cache.

    Batching: ``get_quote`` calls are buffered for ``window_ms`` or until
    ``max_batch`` distinct symbols are waiting, then served by a single
    ``get_quotes`` call. A symbol already waiting or in flight is joined,
    not requested again. An empty window issues nothing.

    Stale-on-error: when the upstream yields no data but reports errors,
    the last cached value (if any) is returned with ``stale=True``.
    """

    def __init__(
        self,
        manager: ProviderManager,
        cache: TTLStore,
        config: BusConfig | None = None,
    ) -> None:
        self._manager = manager
        self._cache = cache
        self._config = config or BusConfig()
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}
        self._window: dict[str, asyncio.Future] = {}
        self._pending_quotes: dict[str, asyncio.Future] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._batch_tasks: set[asyncio.Task] = set()
        self.batches_dispatched = 0

    @property
    def manager(self) -> ProviderManager:
        return self._manager

    @property
    def cache(self) -> TTLStore:
        return self._cache

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        tasks = [*self._batch_tasks, *self._inflight.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # --- Coalescing ---

    async def _coalesce(self, method: str, params: str, factory: Callable[[], Awaitable[T]]) -> T:
        key = (method, params)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._release(key, t))
        return await asyncio.shield(task)

    def _release(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Bus task %s failed: %s", key, task.exception())

    def _stale_or(
        self, category: CacheCategory, key: str, errors: Sequence[ErrorInfo], empty: Any
    ) -> BusResult:
        stale = self._cache.get_stale(category, key) if errors else None
        if stale is not None:
            logger.info("Serving stale %s:%s after upstream failure", category.value, key)
            tagged = tuple(e.model_copy(update={"stale": True}) for e in errors)
            return BusResult(stale, tagged, stale=True)
        return BusResult(empty, tuple(errors))

    # --- Quotes (batched) ---

    async def get_quote(self, symbol: str) -> BusResult[Quote | None]:
        symbol = symbol.strip().upper()
        cached = self._cache.get(CacheCategory.QUOTE, symbol)
        if cached is not None:
            return BusResult(cached)
        return await asyncio.shield(self._join_window(symbol))

    async def get_quotes(self, symbols: Sequence[str]) -> BusResult[tuple[Quote, ...]]:
        unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s.strip()))
        results = await asyncio.gather(*(self.get_quote(s) for s in unique))
        quotes = tuple(r.data for r in results if r.data is not None)
        return BusResult(quotes, merge_errors(results), stale=any(r.stale for r in results))

    def _join_window(self, symbol: str) -> asyncio.Future:
        future = self._window.get(symbol) or self._pending_quotes.get(symbol)
        if future is not None:
            return future

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._window[symbol] = future
        if len(self._window) >= self._config.max_batch:
            self._flush()
        elif self._timer is None:
            self._timer = loop.call_later(self._config.window_ms / 1000.0, self._flush)
        return future

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._window = self._window, {}
        if not batch:
            return
        self._pending_quotes.update(batch)
        task = asyncio.create_task(self._dispatch(batch))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def _dispatch(self, batch: dict[str, asyncio.Future]) -> None:
        self.batches_dispatched += 1
        try:
            quotes, errors = await self._manager.get_quotes(list(batch))
        except Exception as e:
            for symbol, future in batch.items():
                self._pending_quotes.pop(symbol, None)
                if not future.done():
                    future.set_exception(e)
            return

        by_symbol = {q.symbol: q for q in quotes}
        for quote in quotes:
            self._cache.set(CacheCategory.QUOTE, quote.symbol, quote)
        for symbol, future in batch.items():
            self._pending_quotes.pop(symbol, None)
            if future.done():
                continue
            quote = by_symbol.get(symbol)
            if quote is not None:
                future.set_result(BusResult(quote, tuple(errors)))
            else:
                future.set_result(self._stale_or(CacheCategory.QUOTE, symbol, errors, None))

    # --- OHLC ---

    async def get_ohlc(
        self, symbol: str, interval: Interval, limit: int
    ) -> BusResult[tuple[Candle, ...]]:
        """Candles for ``(symbol, interval)``, newest ``limit`` of them.

        One cache entry per ``(symbol, interval)`` holds the widest series
        fetched so far; narrower requests are sliced from it.
        """
        symbol = symbol.strip().upper()
        key = f"{symbol}:{interval.value}"
        cached = self._cache.get(CacheCategory.OHLC, key)
        if cached is not None and cached.covers(limit):
            return BusResult(cached.tail(limit))

        async def load() -> BusResult[tuple[Candle, ...]]:
            candles, errors = await self._manager.get_ohlc(symbol, interval, limit)
            if candles:
                series = OhlcSeries(limit, tuple(candles))
                current = self._cache.get(CacheCategory.OHLC, key)
                if current is None or not current.covers(limit):
                    self._cache.set(CacheCategory.OHLC, key, series)
                return BusResult(series.tail(limit), tuple(errors))
            result = self._stale_or(CacheCategory.OHLC, key, errors, None)
            if result.data is None:
                return BusResult((), result.errors)
            return BusResult(result.data.tail(limit), result.errors, stale=True)

        return await self._coalesce("ohlc", f"{key}:{limit}", load)

    # --- News ---

    async def get_news(self, scope: NewsScope) -> BusResult[NewsBatch]:
        key = scope.cache_key()
        cached = self._cache.get(CacheCategory.NEWS, key)
        if cached is not None:
            return BusResult(cached)

        async def load() -> BusResult[NewsBatch]:
            items, counts, errors = await self._manager.get_news(scope)
            batch = NewsBatch(tuple(items), MappingProxyType(dict(counts)))
            if items or not errors:
                self._cache.set(CacheCategory.NEWS, key, batch)
                return BusResult(batch, tuple(errors))
            return self._stale_or(CacheCategory.NEWS, key, errors, batch)

        return await self._coalesce("news", key, load)

    # --- Symbols ---

    async def get_symbol_listings(
        self, force: bool = False
    ) -> BusResult[tuple[tuple[str, tuple[SymbolRecord, ...]], ...]]:
        """Per-provider symbol listings, cached for the symbols TTL."""
        key = "listings"
        if not force:
            cached = self._cache.get(CacheCategory.SYMBOLS, key)
            if cached is not None:
                return BusResult(cached)

        async def load():
            batches, errors = await self._manager.get_symbols()
            listings = tuple((provider, tuple(records)) for provider, records in batches)
            if any(records for _, records in listings):
                self._cache.set(CacheCategory.SYMBOLS, key, listings)
                return BusResult(listings, tuple(errors))
            return self._stale_or(CacheCategory.SYMBOLS, key, errors, listings)

        return await self._coalesce("symbols", key, load)

    # --- Health ---

    def get_health(self) -> Mapping[str, ProviderHealth]:
        cached = self._cache.get(CacheCategory.HEALTH, "providers")
        if cached is not None:
            return cached
        snapshot = MappingProxyType(self._manager.health())
        self._cache.set(CacheCategory.HEALTH, "providers", snapshot)
        return snapshot
