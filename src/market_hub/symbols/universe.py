"""Symbol universe: immutable snapshots, inverted alias index, atomic refresh."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from difflib import SequenceMatcher
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Sequence

from market_hub.core.config import UniverseConfig
from market_hub.core.exceptions import UniverseLoadError
from market_hub.core.models import AssetType, ErrorInfo, SymbolRecord
from market_hub.gateway.bus import RequestBus
from market_hub.symbols.aliases import derive_aliases, normalize, significant_words

logger = logging.getLogger(__name__)

US_EXCHANGES = frozenset({"NASDAQ", "NYSE", "AMEX"})

# Listing venues folded into their parent exchange
_EXCHANGE_ALIASES = {
    "NYSE ARCA": "NYSE",
    "NYSEARCA": "NYSE",
    "ARCA": "NYSE",
    "NYSE AMERICAN": "AMEX",
    "NYSE MKT": "AMEX",
    "BATS": "NYSE",
    "CBOE": "NYSE",
    "NASDAQGS": "NASDAQ",
    "NASDAQGM": "NASDAQ",
    "NASDAQCM": "NASDAQ",
}

_FUZZY_THRESHOLD = 0.7
_RETRY_UNLOADED = 300.0
_ETF_VENUE = {"QQQ": "NASDAQ"}


def canonical_exchange(exchange: str | None) -> str | None:
    name = (exchange or "").strip().upper()
    name = _EXCHANGE_ALIASES.get(name, name)
    return name if name in US_EXCHANGES else None


class UniverseSnapshot:
    """One fully built, read-only view of the tradable universe.

    ``index`` maps a normalized alias to every record carrying it, and the
    word index maps each significant company-name word (3+ letters) to
    its records. The snapshot is never modified after construction.
    """

    __slots__ = ("_records", "_index", "_words", "loaded_at", "max_alias_words")

    def __init__(self, records: Iterable[SymbolRecord], loaded_at: datetime | None = None):
        by_symbol: dict[str, SymbolRecord] = {}
        for record in records:
            by_symbol.setdefault(record.symbol, record)

        index: dict[str, list[SymbolRecord]] = {}
        words: dict[str, list[SymbolRecord]] = {}
        max_words = 1
        for record in by_symbol.values():
            for alias in record.aliases:
                index.setdefault(alias, []).append(record)
                max_words = max(max_words, alias.count(" ") + 1)
            for word in dict.fromkeys(significant_words(record.company_name)):
                if len(word) > 2:
                    words.setdefault(word, []).append(record)

        self._records: Mapping[str, SymbolRecord] = MappingProxyType(by_symbol)
        self._index: Mapping[str, tuple[SymbolRecord, ...]] = MappingProxyType(
            {alias: tuple(recs) for alias, recs in index.items()}
        )
        self._words: Mapping[str, tuple[SymbolRecord, ...]] = MappingProxyType(
            {word: tuple(recs) for word, recs in words.items()}
        )
        self.loaded_at = loaded_at
        self.max_alias_words = max_words

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SymbolRecord]:
        return iter(self._records.values())

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._records

    def get(self, symbol: str) -> SymbolRecord | None:
        return self._records.get(symbol.upper())

    def lookup_alias(self, phrase: str) -> tuple[SymbolRecord, ...]:
        """Records whose alias equals ``normalize(phrase)``."""
        return self._index.get(normalize(phrase), ())

    def has_alias(self, normalized_phrase: str) -> bool:
        return normalized_phrase in self._index

    def records_with_word(self, word: str) -> tuple[SymbolRecord, ...]:
        return self._words.get(word, ())

    def search(
        self,
        query: str | None = None,
        limit: int = 50,
        exchange: str | None = None,
        sector: str | None = None,
    ) -> tuple[list[SymbolRecord], int]:
        """Rank records against ``query``. Returns (page, total matches).

        Scores: exact symbol 100, exact alias 95, symbol prefix 90, alias
        substring 80, fuzzy company name (ratio >= 0.7) 70 * ratio.
        Without a query every record matches, ordered by symbol.
        """
        exchange = exchange.upper() if exchange else None
        sector = sector.lower() if sector else None
        q_upper = (query or "").strip().upper()
        q_norm = normalize(query or "")

        scored: list[tuple[float, str, SymbolRecord]] = []
        for record in self._records.values():
            if exchange and record.exchange != exchange:
                continue
            if sector and (record.sector or "").lower() != sector:
                continue
            if not q_norm:
                scored.append((0.0, record.symbol, record))
                continue
            score = _match_score(record, q_upper, q_norm)
            if score > 0:
                scored.append((score, record.symbol, record))

        scored.sort(key=lambda t: (-t[0], t[1]))
        return [r for _, _, r in scored[:limit]], len(scored)


def _match_score(record: SymbolRecord, q_upper: str, q_norm: str) -> float:
    if record.symbol == q_upper:
        return 100.0
    if q_norm in record.aliases:
        return 95.0
    if record.symbol.startswith(q_upper):
        return 90.0
    if any(q_norm in alias for alias in record.aliases):
        return 80.0
    if len(q_norm) < 3:
        return 0.0
    matcher = SequenceMatcher(None, q_norm, normalize(record.company_name))
    if matcher.real_quick_ratio() < _FUZZY_THRESHOLD or matcher.quick_ratio() < _FUZZY_THRESHOLD:
        return 0.0
    ratio = matcher.ratio()
    return 70.0 * ratio if ratio >= _FUZZY_THRESHOLD else 0.0


def _fill_gaps(existing: SymbolRecord, incoming: SymbolRecord) -> SymbolRecord:
    """Earlier (higher-priority) providers win; later ones only fill blanks."""
    updates = {
        name: getattr(incoming, name)
        for name in ("sector", "industry", "market_cap")
        if getattr(existing, name) is None and getattr(incoming, name) is not None
    }
    return existing.model_copy(update=updates) if updates else existing


def build_snapshot(
    listings: Sequence[tuple[str, Sequence[SymbolRecord]]],
    major_etfs: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> UniverseSnapshot:
    """Merge per-provider listings (priority order) into a snapshot.

    Records outside the recognised US exchanges and inactive records are
    dropped; asset types are already constrained by SymbolRecord. Major
    ETFs are always present.
    Every record gets its derived aliases and ``loaded_at``.
    """
    now = now or datetime.now(timezone.utc)
    merged: dict[str, SymbolRecord] = {}
    for _provider, records in listings:
        for record in records:
            exchange = canonical_exchange(record.exchange)
            if exchange is None or not record.active:
                continue
            if exchange != record.exchange:
                record = record.model_copy(update={"exchange": exchange})
            existing = merged.get(record.symbol)
            merged[record.symbol] = record if existing is None else _fill_gaps(existing, record)

    for symbol, name in (major_etfs or {}).items():
        if symbol not in merged:
            merged[symbol] = SymbolRecord(
                symbol=symbol,
                company_name=name,
                exchange=_ETF_VENUE.get(symbol, "NYSE"),
                asset_type=AssetType.ETF,
            )

    final = [
        r.model_copy(
            update={"aliases": derive_aliases(r.symbol, r.company_name), "loaded_at": now}
        )
        for r in merged.values()
    ]
    return UniverseSnapshot(final, loaded_at=now)


class SymbolUniverse:
    """Holder of the current snapshot, refreshed periodically.

    Readers call ``snapshot()`` once per operation and keep using that
    reference. ``refresh()`` builds a new snapshot off to the side and
    swaps it in with a single assignment, so readers see either the old
    or the new universe, never a mix.

    A failed refresh keeps the previous snapshot. Only a failure of the
    very first load is raised (``UniverseLoadError``).
    """

    def __init__(self, bus: RequestBus, config: UniverseConfig | None = None) -> None:
        self._bus = bus
        self._config = config or UniverseConfig()
        self._snapshot: UniverseSnapshot | None = None
        self._refresh_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.last_errors: tuple[ErrorInfo, ...] = ()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def loaded_at(self) -> datetime | None:
        snap = self._snapshot
        return snap.loaded_at if snap is not None else None

    def __len__(self) -> int:
        snap = self._snapshot
        return len(snap) if snap is not None else 0

    def snapshot(self) -> UniverseSnapshot:
        """Current snapshot; an empty one before the first successful load."""
        snap = self._snapshot
        return snap if snap is not None else UniverseSnapshot((), loaded_at=None)

    def accepts(self, symbol: str) -> bool:
        """Symbol filter for the provider manager; permissive until loaded."""
        snap = self._snapshot
        return snap is None or symbol in snap

    def install(self, snapshot: UniverseSnapshot) -> None:
        """Swap in a prebuilt snapshot."""
        self._snapshot = snapshot

    async def refresh(self, force: bool = True) -> UniverseSnapshot:
        """Rebuild the universe from provider listings and swap it in."""
        async with self._refresh_lock:
            result = await self._bus.get_symbol_listings(force=force)
            self.last_errors = result.errors
            provider_records = sum(len(records) for _, records in result.data)

            if provider_records == 0:
                message = "symbol universe refresh returned no records"
                if self._snapshot is None:
                    raise UniverseLoadError(
                        message,
                        context={"errors": [e.model_dump(mode="json") for e in result.errors]},
                    )
                logger.warning("%s; keeping snapshot from %s", message, self._snapshot.loaded_at)
                return self._snapshot

            snapshot = build_snapshot(result.data, self._config.major_etfs)
            self._snapshot = snapshot
            logger.info(
                "Symbol universe swapped in: %d symbols (%d provider errors)",
                len(snapshot), len(result.errors),
            )
            return snapshot

    # --- Background refresh ---

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        interval = self._config.refresh_hours * 3600
        while True:
            try:
                await self.refresh(force=self.loaded)
            except UniverseLoadError as e:
                logger.error("Initial symbol universe load failed: %s", e)
            await asyncio.sleep(interval if self.loaded else min(interval, _RETRY_UNLOADED))
