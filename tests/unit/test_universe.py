"""Tests for market_hub.symbols.universe."""

import random

import pytest

from market_hub.core.config import BusConfig, CacheConfig, UniverseConfig
from market_hub.core.exceptions import ProviderError, UniverseLoadError
from market_hub.core.models import AssetType, SymbolRecord
from market_hub.gateway.bus import RequestBus
from market_hub.gateway.cache import TTLStore
from market_hub.gateway.manager import ProviderManager
from market_hub.symbols.universe import (
    SymbolUniverse,
    UniverseSnapshot,
    build_snapshot,
    canonical_exchange,
)

# --- Fixtures ---


@pytest.fixture
def universe_for(clock):
    def build(*adapters, major_etfs=None):
        manager = ProviderManager(list(adapters), clock=clock, rng=random.Random(0))
        bus = RequestBus(manager, TTLStore(CacheConfig(), timer=clock), BusConfig())
        return SymbolUniverse(bus, UniverseConfig(major_etfs=major_etfs or {}))

    return build


def _record(symbol, name, exchange="NASDAQ", **fields):
    return SymbolRecord(symbol=symbol, company_name=name, exchange=exchange, **fields)


class TestCanonicalExchange:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("NASDAQ", "NASDAQ"),
            ("nyse", "NYSE"),
            ("NYSE ARCA", "NYSE"),
            ("NYSE American", "AMEX"),
            ("NasdaqGS", "NASDAQ"),
            ("LSE", None),
            ("", None),
            (None, None),
        ],
    )
    def test_canonical(self, raw, expected):
        assert canonical_exchange(raw) == expected


class TestBuildSnapshot:
    def test_venues_folded(self, snapshot):
        assert snapshot.get("SPY").exchange == "NYSE"

    def test_non_us_and_inactive_dropped(self):
        snap = build_snapshot(
            [
                (
                    "a",
                    [
                        _record("AAPL", "Apple Inc."),
                        _record("VOD", "Vodafone Group Plc", exchange="LSE"),
                        _record("OLD", "Old Corp", active=False),
                    ],
                )
            ]
        )
        assert [r.symbol for r in snap] == ["AAPL"]

    def test_higher_priority_provider_wins_and_gaps_filled(self):
        snap = build_snapshot(
            [
                ("a", [_record("AAPL", "Apple Inc.")]),
                ("b", [_record("AAPL", "Apple Computer", sector="Technology", market_cap=3e12)]),
            ]
        )
        record = snap.get("AAPL")
        assert record.company_name == "Apple Inc."
        assert record.sector == "Technology"
        assert record.market_cap == 3e12

    def test_major_etfs_added(self):
        snap = build_snapshot(
            [("a", [_record("SPY", "SPDR S&P 500 ETF Trust", exchange="NYSE ARCA")])],
            major_etfs={"SPY": "ignored", "QQQ": "Invesco QQQ Trust", "IWM": "iShares Russell"},
        )
        assert snap.get("SPY").company_name == "SPDR S&P 500 ETF Trust"
        assert snap.get("QQQ").exchange == "NASDAQ"
        assert snap.get("QQQ").asset_type == AssetType.ETF
        assert snap.get("IWM").exchange == "NYSE"

    def test_aliases_and_load_time_attached(self, snapshot):
        record = snapshot.get("aapl")
        assert record.aliases == ("apple inc", "apple", "aapl")
        assert record.loaded_at == snapshot.loaded_at
        assert snapshot.lookup_alias("Apple")[0].symbol == "AAPL"
        assert snapshot.has_alias("microsoft")

    def test_membership(self, snapshot):
        assert "aapl" in snapshot
        assert "ZZZZ" not in snapshot
        assert 42 not in snapshot
        assert len(snapshot) == 10

    def test_word_index(self, snapshot):
        assert [r.symbol for r in snapshot.records_with_word("texas")] == ["TXN"]


class TestSearch:
    def test_exact_symbol_first(self, snapshot):
        page, total = snapshot.search("AAPL")
        assert page[0].symbol == "AAPL"
        assert total >= 1

    def test_exact_alias(self, snapshot):
        page, _ = snapshot.search("apple")
        assert page[0].symbol == "AAPL"

    def test_symbol_prefix_beats_alias_substring(self, snapshot):
        page, _ = snapshot.search("MS")
        symbols = [r.symbol for r in page]
        assert symbols[0] == "MSFT"
        assert "META" in symbols

    def test_fuzzy_company_name(self, snapshot):
        page, _ = snapshot.search("Microsoft Corporatin")
        assert page[0].symbol == "MSFT"

    def test_no_match(self, snapshot):
        assert snapshot.search("qwertyuiop") == ([], 0)

    def test_exchange_filter(self, snapshot):
        page, total = snapshot.search(exchange="nyse")
        assert [r.symbol for r in page] == ["JPM", "SPY"]
        assert total == 2

    def test_sector_filter(self, snapshot):
        page, _ = snapshot.search(sector="technology")
        assert [r.symbol for r in page] == ["AAPL", "META", "MSFT", "TXN"]

    def test_limit_reports_full_total(self, snapshot):
        page, total = snapshot.search(limit=3)
        assert len(page) == 3
        assert total == 10


class TestSymbolUniverse:
    def test_unloaded_is_permissive(self, universe_for, make_adapter):
        universe = universe_for(make_adapter("a"))
        assert not universe.loaded
        assert universe.loaded_at is None
        assert len(universe) == 0
        assert len(universe.snapshot()) == 0
        assert universe.accepts("ANYTHING")

    async def test_refresh_loads(self, universe_for, make_adapter, sample_records):
        universe = universe_for(make_adapter("a", symbols=sample_records))
        snap = await universe.refresh()
        assert universe.loaded
        assert universe.snapshot() is snap
        assert len(universe) == 10
        assert universe.accepts("AAPL")
        assert not universe.accepts("ZZZZ")

    async def test_major_etfs_included(self, universe_for, make_adapter, sample_records):
        universe = universe_for(
            make_adapter("a", symbols=sample_records), major_etfs={"QQQ": "Invesco QQQ Trust"}
        )
        await universe.refresh()
        assert universe.accepts("QQQ")

    async def test_first_failure_raises(self, universe_for, make_adapter):
        error = ProviderError("a: HTTP 503", kind="server", status=503)
        universe = universe_for(make_adapter("a", error=error))
        with pytest.raises(UniverseLoadError):
            await universe.refresh()
        assert not universe.loaded
        assert universe.last_errors[0].provider == "a"

    async def test_empty_refresh_keeps_snapshot(
        self, universe_for, make_adapter, sample_records
    ):
        adapter = make_adapter("a", symbols=sample_records)
        universe = universe_for(adapter)
        first = await universe.refresh()
        adapter.symbols = []
        assert await universe.refresh(force=True) is first
        assert universe.snapshot() is first

    async def test_swap_leaves_old_snapshot_untouched(
        self, universe_for, make_adapter, sample_records
    ):
        adapter = make_adapter("a", symbols=sample_records)
        universe = universe_for(adapter)
        await universe.refresh()
        old = universe.snapshot()

        adapter.symbols = [_record("NEWCO", "Newco Holdings Inc.")]
        await universe.refresh(force=True)

        assert "NEWCO" in universe.snapshot()
        assert "AAPL" not in universe.snapshot()
        assert "NEWCO" not in old
        assert len(old) == 10
        assert old.search("apple")[0][0].symbol == "AAPL"

    async def test_failed_refresh_after_load_does_not_raise(
        self, universe_for, make_adapter, sample_records
    ):
        adapter = make_adapter("a", symbols=sample_records)
        universe = universe_for(adapter)
        await universe.refresh()
        symbols = sorted(r.symbol for r in universe.snapshot())

        adapter.error = ProviderError("a: HTTP 503", kind="server", status=503)
        await universe.refresh(force=True)

        assert sorted(r.symbol for r in universe.snapshot()) == symbols
        assert universe.last_errors

    def test_install(self, universe_for, make_adapter, snapshot):
        universe = universe_for(make_adapter("a"))
        universe.install(snapshot)
        assert universe.loaded
        assert universe.loaded_at == snapshot.loaded_at
        assert not universe.accepts("ZZZZ")

    async def test_start_and_stop(self, universe_for, make_adapter, sample_records):
        universe = universe_for(make_adapter("a", symbols=sample_records))
        task = universe.start()
        assert universe.start() is task
        await universe.stop()
        assert task.done()


class TestEmptySnapshot:
    def test_empty(self):
        snap = UniverseSnapshot(())
        assert len(snap) == 0
        assert snap.get("AAPL") is None
        assert snap.search("apple") == ([], 0)
