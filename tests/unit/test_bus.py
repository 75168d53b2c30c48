"""Tests for market_hub.gateway.bus."""

import asyncio
import random

import pytest

from market_hub.core.config import BusConfig, CacheConfig
from market_hub.core.exceptions import ProviderError
from market_hub.core.models import CacheCategory, ErrorInfo, Interval, NewsScope, SymbolRecord
from market_hub.gateway.bus import BusResult, RequestBus, merge_errors
from market_hub.gateway.cache import TTLStore
from market_hub.gateway.manager import ProviderManager

# --- Fixtures ---


@pytest.fixture
def bus_for(clock):
    def build(*adapters, window_ms=5, max_batch=50):
        manager = ProviderManager(list(adapters), clock=clock, rng=random.Random(0))
        cache = TTLStore(CacheConfig(), timer=clock)
        return RequestBus(manager, cache, BusConfig(window_ms=window_ms, max_batch=max_batch))

    return build


def _server_error() -> ProviderError:
    return ProviderError("a: HTTP 503", kind="server", status=503)


class TestQuoteBatching:
    async def test_concurrent_callers_share_one_upstream_call(
        self, make_adapter, make_quote, bus_for
    ):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")])
        bus = bus_for(a, window_ms=100)

        results = await asyncio.gather(*(bus.get_quote("AAPL") for _ in range(100)))

        assert a.calls == [("quotes", ("AAPL",))]
        assert bus.batches_dispatched == 1
        assert all(r.data is results[0].data for r in results)
        assert results[0].data.price == 190.0

    async def test_distinct_symbols_batched(self, make_adapter, make_quote, bus_for):
        a = make_adapter(
            "a",
            quotes=[make_quote("AAPL", provider_id="a"), make_quote("MSFT", provider_id="a")],
        )
        bus = bus_for(a)
        first, second = await asyncio.gather(bus.get_quote("AAPL"), bus.get_quote("msft"))
        assert a.calls == [("quotes", ("AAPL", "MSFT"))]
        assert first.data.symbol == "AAPL"
        assert second.data.symbol == "MSFT"

    async def test_full_window_flushes_early(self, make_adapter, make_quote, bus_for):
        a = make_adapter(
            "a", quotes=[make_quote(s, provider_id="a") for s in ("AAPL", "MSFT", "TSLA")]
        )
        bus = bus_for(a, window_ms=20, max_batch=2)
        await asyncio.gather(*(bus.get_quote(s) for s in ("AAPL", "MSFT", "TSLA")))
        assert a.calls == [("quotes", ("AAPL", "MSFT")), ("quotes", ("TSLA",))]
        assert bus.batches_dispatched == 2

    async def test_empty_window_issues_nothing(self, make_adapter, bus_for):
        a = make_adapter("a")
        bus = bus_for(a)
        result = await bus.get_quotes(["", "  "])
        await asyncio.sleep(0.02)
        assert result.data == ()
        assert result.errors == ()
        assert bus.batches_dispatched == 0
        assert a.calls == []

    async def test_in_flight_symbol_is_joined(self, make_adapter, make_quote, bus_for):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")], delay=0.1)
        bus = bus_for(a)
        first = asyncio.create_task(bus.get_quote("AAPL"))
        await asyncio.sleep(0.03)
        second = await bus.get_quote("AAPL")
        assert (await first).data is second.data
        assert len(a.calls) == 1

    async def test_cached_quote_skips_upstream(self, make_adapter, make_quote, bus_for):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")])
        bus = bus_for(a)
        await bus.get_quote("AAPL")
        await bus.get_quote("AAPL")
        assert len(a.calls) == 1

    async def test_get_quotes_collects(self, make_adapter, make_quote, bus_for):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")])
        bus = bus_for(a)
        result = await bus.get_quotes(["AAPL", "aapl", "ZZZZ"])
        assert [q.symbol for q in result.data] == ["AAPL"]
        assert a.calls == [("quotes", ("AAPL", "ZZZZ"))]

    async def test_cancelled_caller_does_not_cancel_batch(
        self, make_adapter, make_quote, bus_for
    ):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")], delay=0.05)
        bus = bus_for(a)
        task = asyncio.create_task(bus.get_quote("AAPL"))
        await asyncio.sleep(0.02)
        task.cancel()
        await asyncio.sleep(0.1)
        assert bus.cache.get(CacheCategory.QUOTE, "AAPL") is not None


class TestStaleOnError:
    async def test_serves_stale_quote_when_upstream_fails(
        self, make_adapter, make_quote, bus_for, clock
    ):
        a = make_adapter("a", quotes=[make_quote("AAPL", provider_id="a")])
        bus = bus_for(a)
        fresh = await bus.get_quote("AAPL")

        clock.advance(31)
        a.error = _server_error()
        result = await bus.get_quote("AAPL")

        assert result.stale
        assert result.data == fresh.data
        assert result.errors[0].stale
        assert result.errors[0].provider == "a"

    async def test_no_stale_value(self, make_adapter, bus_for):
        a = make_adapter("a", error=_server_error())
        bus = bus_for(a)
        result = await bus.get_quote("AAPL")
        assert result.data is None
        assert not result.stale
        assert result.errors[0].kind == "server"

    async def test_stale_ohlc(self, make_adapter, make_candles, bus_for, clock):
        a = make_adapter("a", candles=make_candles(3))
        bus = bus_for(a)
        fresh = await bus.get_ohlc("AAPL", Interval.MIN_5, 3)

        clock.advance(61)
        a.error = _server_error()
        result = await bus.get_ohlc("AAPL", Interval.MIN_5, 3)

        assert result.stale
        assert result.data == fresh.data


class TestCoalescing:
    async def test_identical_ohlc_requests_share_one_call(
        self, make_adapter, make_candles, bus_for
    ):
        a = make_adapter("a", candles=make_candles(5), delay=0.05)
        bus = bus_for(a)
        results = await asyncio.gather(
            *(bus.get_ohlc("AAPL", Interval.MIN_5, 5) for _ in range(20))
        )
        assert len(a.calls_to("ohlc")) == 1
        assert all(r.data == results[0].data for r in results)

    async def test_different_params_not_coalesced(self, make_adapter, make_candles, bus_for):
        a = make_adapter("a", candles=make_candles(5))
        bus = bus_for(a)
        await asyncio.gather(
            bus.get_ohlc("AAPL", Interval.MIN_5, 5), bus.get_ohlc("AAPL", Interval.MIN_5, 2)
        )
        assert len(a.calls_to("ohlc")) == 2

    async def test_cancelled_caller_still_populates_cache(
        self, make_adapter, make_candles, bus_for
    ):
        a = make_adapter("a", candles=make_candles(5), delay=0.05)
        bus = bus_for(a)
        task = asyncio.create_task(bus.get_ohlc("AAPL", Interval.MIN_5, 5))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.1)
        assert bus.cache.get(CacheCategory.OHLC, "AAPL:5m") is not None


class TestOhlcCache:
    async def test_narrower_request_sliced_from_cache(self, make_adapter, make_candles, bus_for):
        a = make_adapter("a", candles=make_candles(5))
        bus = bus_for(a)
        wide = await bus.get_ohlc("AAPL", Interval.MIN_5, 5)
        narrow = await bus.get_ohlc("AAPL", Interval.MIN_5, 2)
        assert len(a.calls_to("ohlc")) == 1
        assert narrow.data == wide.data[-2:]

    async def test_wider_request_refetches(self, make_adapter, make_candles, bus_for):
        a = make_adapter("a", candles=make_candles(5))
        bus = bus_for(a)
        await bus.get_ohlc("AAPL", Interval.MIN_5, 2)
        wide = await bus.get_ohlc("AAPL", Interval.MIN_5, 5)
        assert len(a.calls_to("ohlc")) == 2
        assert len(wide.data) == 5
        assert bus.cache.get(CacheCategory.OHLC, "AAPL:5m").requested == 5

    async def test_narrower_fetch_keeps_wider_entry(self, make_adapter, make_candles, bus_for):
        a = make_adapter("a", candles=make_candles(5), delay=0.02)
        bus = bus_for(a)
        await asyncio.gather(
            bus.get_ohlc("AAPL", Interval.MIN_5, 5), bus.get_ohlc("AAPL", Interval.MIN_5, 2)
        )
        assert bus.cache.get(CacheCategory.OHLC, "AAPL:5m").requested == 5

    async def test_intervals_cached_separately(self, make_adapter, make_candles, bus_for):
        a = make_adapter("a", candles=make_candles(3))
        bus = bus_for(a)
        await bus.get_ohlc("AAPL", Interval.MIN_5, 3)
        await bus.get_ohlc("AAPL", Interval.DAY_1, 3)
        assert len(a.calls_to("ohlc")) == 2

    async def test_stale_series_sliced(self, make_adapter, make_candles, bus_for, clock):
        a = make_adapter("a", candles=make_candles(5))
        bus = bus_for(a)
        wide = await bus.get_ohlc("AAPL", Interval.MIN_5, 5)

        clock.advance(61)
        a.error = _server_error()
        result = await bus.get_ohlc("AAPL", Interval.MIN_5, 3)

        assert result.stale
        assert result.data == wide.data[-3:]


class TestNews:
    async def test_news_cached(self, make_adapter, make_news, bus_for):
        a = make_adapter("a", news=[make_news("Apple beats", url="a.com/1", provider="a")])
        bus = bus_for(a)
        first = await bus.get_news(NewsScope.general())
        second = await bus.get_news(NewsScope.general())
        assert len(first.data.items) == 1
        assert dict(first.data.counts) == {"a": 1}
        assert second.data is first.data
        assert len(a.calls) == 1

    async def test_failed_news_not_cached(self, make_adapter, bus_for):
        a = make_adapter("a", error=_server_error())
        bus = bus_for(a)
        result = await bus.get_news(NewsScope.general())
        assert result.data.items == ()
        assert result.errors
        assert bus.cache.get(CacheCategory.NEWS, NewsScope.general().cache_key()) is None


class TestSymbolsAndHealth:
    async def test_listings_cached_unless_forced(self, make_adapter, bus_for):
        record = SymbolRecord(symbol="AAPL", company_name="Apple Inc.", exchange="NASDAQ")
        a = make_adapter("a", symbols=[record])
        bus = bus_for(a)
        result = await bus.get_symbol_listings()
        await bus.get_symbol_listings()
        assert result.data == (("a", (record,)),)
        assert len(a.calls) == 1
        await bus.get_symbol_listings(force=True)
        assert len(a.calls) == 2

    async def test_health_snapshot(self, make_adapter, bus_for):
        bus = bus_for(make_adapter("a"))
        health = bus.get_health()
        assert list(health) == ["a"]
        assert bus.get_health() is health


class TestMergeErrors:
    def test_duplicates_dropped(self):
        error = ErrorInfo(provider="a", kind="server", message="boom")
        merged = merge_errors([BusResult(None, (error,)), BusResult(None, (error,))])
        assert merged == (error,)
