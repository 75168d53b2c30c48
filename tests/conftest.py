"""Shared pytest fixtures for market-hub."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from market_hub.core.models import (
    AssetType,
    Candle,
    Capability,
    Interval,
    NewsItem,
    NewsScope,
    Quote,
    SymbolRecord,
    normalize_series,
)
from market_hub.news.canonical import news_id
from market_hub.symbols.universe import build_snapshot

NOW = datetime(2024, 1, 5, 15, 30, tzinfo=timezone.utc)

ALL_CAPABILITIES = frozenset(Capability)


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter:
    """In-memory ProviderAdapter with call recording and injectable failures.

    ``error`` is raised by every fetch while set. ``delay`` makes each
    call take that many seconds, for coalescing and deadline tests.
    ``symbols_per_request`` sets the quote request size the manager charges for.
    """

    def __init__(
        self,
        provider_id: str = "fake",
        capabilities: frozenset[Capability] = ALL_CAPABILITIES,
        quotes: Sequence[Quote] = (),
        candles: Sequence[Candle] = (),
        news: Sequence[NewsItem] = (),
        symbols: Sequence[SymbolRecord] = (),
        error: BaseException | None = None,
        delay: float = 0.0,
        symbols_per_request: int | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.symbols_per_request = symbols_per_request
        self.capabilities = frozenset(capabilities)
        self.quotes = list(quotes)
        self.candles = list(candles)
        self.news = list(news)
        self.symbols = list(symbols)
        self.error = error
        self.delay = delay
        self.calls: list[tuple] = []
        self.closed = False

    async def _call(self, *record):
        self.calls.append(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        await self._call("quotes", tuple(symbols))
        wanted = {s.upper() for s in symbols}
        return [q for q in self.quotes if q.symbol in wanted]

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        await self._call("ohlc", symbol, interval, limit)
        return normalize_series(self.candles, limit)

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        await self._call("news", scope)
        return self.news[: scope.limit]

    async def fetch_symbols(self) -> list[SymbolRecord]:
        await self._call("symbols")
        return list(self.symbols)

    async def close(self) -> None:
        self.closed = True


# --- Factories ---


def _quote(symbol: str = "AAPL", price: float = 190.0, provider_id: str = "fake", **fields) -> Quote:
    fields.setdefault("updated_at", NOW)
    return Quote(symbol=symbol, price=price, provider_id=provider_id, **fields)


def _news(
    title: str,
    url: str = "",
    published_at: datetime = NOW,
    provider: str = "fake",
    **fields,
) -> NewsItem:
    return NewsItem(
        id=news_id(url, title, published_at),
        title=title,
        url=url,
        published_at=published_at,
        provider=provider,
        source=fields.pop("source", provider),
        **fields,
    )


def _candles(count: int = 5, start: datetime = NOW, step: timedelta = timedelta(minutes=5)):
    return [
        Candle(
            time=start + i * step,
            open=100.0 + i,
            high=101.5 + i,
            low=99.5 + i,
            close=101.0 + i,
            volume=1000.0 * (i + 1),
        )
        for i in range(count)
    ]


@pytest.fixture
def make_quote():
    return _quote


@pytest.fixture
def make_news():
    return _news


@pytest.fixture
def make_candles():
    return _candles


@pytest.fixture
def make_adapter():
    return FakeAdapter


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# --- Symbol universe ---


@pytest.fixture
def sample_records() -> list[SymbolRecord]:
    return [
        SymbolRecord(symbol="AAPL", company_name="Apple Inc.", exchange="NASDAQ", sector="Technology"),
        SymbolRecord(
            symbol="MSFT", company_name="Microsoft Corporation", exchange="NASDAQ",
            sector="Technology",
        ),
        SymbolRecord(symbol="TSLA", company_name="Tesla Inc", exchange="NASDAQ", sector="Consumer"),
        SymbolRecord(
            symbol="TXN", company_name="Texas Instruments Incorporated", exchange="NASDAQ",
            sector="Technology",
        ),
        SymbolRecord(
            symbol="META", company_name="Meta Platforms, Inc.", exchange="NASDAQ",
            sector="Technology",
        ),
        SymbolRecord(symbol="NVDA", company_name="NVIDIA Corporation", exchange="NASDAQ"),
        SymbolRecord(symbol="GOOGL", company_name="Alphabet Inc.", exchange="NASDAQ"),
        SymbolRecord(
            symbol="JPM", company_name="JPMorgan Chase & Co.", exchange="NYSE", sector="Financial"
        ),
        SymbolRecord(symbol="NDAQ", company_name="Nasdaq, Inc.", exchange="NASDAQ"),
        SymbolRecord(
            symbol="SPY", company_name="SPDR S&P 500 ETF Trust", exchange="NYSE ARCA",
            asset_type=AssetType.ETF,
        ),
    ]


@pytest.fixture
def snapshot(sample_records):
    """A built universe over ``sample_records`` (no extra ETFs)."""
    return build_snapshot([("fake", sample_records)], now=NOW)
