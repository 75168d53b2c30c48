"""Scanner engine: builds the scan universe, fetches quotes, applies presets."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from market_hub.core.config import ScannerConfig
from market_hub.core.models import ErrorInfo, NewsItem, Quote, ScanHit, ScannerPreset, ScanResult
from market_hub.gateway.bus import RequestBus, merge_errors
from market_hub.news.aggregator import NewsAggregator
from market_hub.scanner.presets import get_rule

logger = logging.getLogger(__name__)


def gap_percent(quote: Quote) -> float:
    """Move versus the previous close; the provider's change % when no close is known."""
    if quote.previous_close:
        return (quote.price - quote.previous_close) / quote.previous_close * 100.0
    return quote.change_percent


def to_hit(quote: Quote, news_count: int = 0) -> ScanHit:
    return ScanHit(
        symbol=quote.symbol,
        name=quote.name,
        price=quote.price,
        change=quote.change,
        change_percent=quote.change_percent,
        volume=quote.volume,
        average_volume=quote.average_volume,
        rvol=quote.rvol,
        gap_percent=round(gap_percent(quote), 4),
        market_cap=quote.market_cap,
        news_count=news_count,
        provider_id=quote.provider_id,
        updated_at=quote.updated_at,
    )


def news_mentions(items: Iterable[NewsItem]) -> Counter:
    """Articles per ticker, counting each ticker once per article."""
    counts: Counter = Counter()
    for item in items:
        tickers = {*item.provider_tickers, *item.secondary_tickers}
        if item.primary_ticker:
            tickers.add(item.primary_ticker)
        counts.update(tickers)
    return counts


class ScannerEngine:
    """Runs a preset over the seed list plus tickers seen in recent news.

    Quotes are requested through the bus in batches of ``batch_size``.
    A batch that comes back with errors still contributes whatever quotes
    it produced; its diagnostics are returned alongside the hits.
    """

    def __init__(
        self,
        bus: RequestBus,
        news: NewsAggregator | None = None,
        config: ScannerConfig | None = None,
    ) -> None:
        self._bus = bus
        self._news = news
        self._config = config or ScannerConfig()

    async def _news_counts(self, now: datetime) -> tuple[Counter, tuple[ErrorInfo, ...]]:
        if self._news is None or not self._config.include_news_symbols:
            return Counter(), ()
        result = await self._news.aggregate(limit=self._config.news_limit, now=now)
        cutoff = now - timedelta(hours=self._config.news_window_hours)
        recent = [i for i in result.items if i.published_at >= cutoff]
        return news_mentions(recent), result.errors

    def _universe(self, news_counts: Counter) -> list[str]:
        seeds = [s.upper() for s in self._config.seed_symbols]
        from_news = sorted(news_counts, key=lambda s: (-news_counts[s], s))
        return list(dict.fromkeys([*seeds, *from_news]))

    async def _fetch(self, symbols: Sequence[str]):
        size = max(1, self._config.batch_size)
        quotes: list[Quote] = []
        results = []
        for start in range(0, len(symbols), size):
            batch = symbols[start : start + size]
            result = await self._bus.get_quotes(batch)
            if result.errors and len(result.data) < len(batch):
                logger.warning(
                    "Scanner batch %d-%d returned %d/%d quotes",
                    start, start + len(batch), len(result.data), len(batch),
                )
            quotes.extend(result.data)
            results.append(result)
        return quotes, results

    async def scan(
        self,
        preset: str | ScannerPreset,
        limit: int = 50,
        min_price: float | None = None,
        max_price: float | None = None,
        min_volume: int | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Run ``preset`` and return at most ``limit`` ranked hits.

        Raises:
            ClientRequestError: Unknown preset name.
        """
        rule = get_rule(preset)
        now = now or datetime.now(timezone.utc)

        counts, news_errors = await self._news_counts(now)
        symbols = self._universe(counts)
        quotes, results = await self._fetch(symbols)

        hits = []
        for quote in quotes:
            if min_price is not None and quote.price < min_price:
                continue
            if max_price is not None and quote.price > max_price:
                continue
            if min_volume is not None and quote.volume < min_volume:
                continue
            hit = to_hit(quote, counts.get(quote.symbol, 0))
            if rule.matches(hit, self._config):
                hits.append(hit)
        hits.sort(key=lambda h: (rule.sort_key(h), h.symbol))

        errors = {(e.provider, e.kind, e.message): e for e in news_errors}
        for error in merge_errors(results):
            errors.setdefault((error.provider, error.kind, error.message), error)

        logger.info(
            "Scan %s: %d hits from %d quotes (%d symbols)",
            rule.preset.value, len(hits), len(quotes), len(symbols),
        )
        return ScanResult(
            preset=rule.preset,
            stocks=tuple(hits[:limit]),
            universe_size=len(symbols),
            total_processed=len(quotes),
            errors=tuple(errors.values()),
            stale=any(r.stale for r in results),
        )
