"""News aggregation: fetch, filter, resolve tickers, dedupe, tag."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Mapping

from market_hub.core.models import (
    DateRange,
    ErrorInfo,
    NewsItem,
    NewsScope,
    Sentiment,
)
from market_hub.gateway.bus import RequestBus
from market_hub.news.canonical import dedupe
from market_hub.symbols.aliases import normalize
from market_hub.symbols.resolver import TickerResolver

logger = logging.getLogger(__name__)

BADGE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "EARNINGS": ("earnings", "quarterly results", "eps"),
    "FDA": ("fda", "approval"),
    "INSIDER": ("insider",),
    "AI": ("artificial intelligence", "ai"),
    "M&A": ("merger", "acquisition", "acquire"),
    "IPO": ("ipo", "initial public offering"),
    "BANKRUPTCY": ("bankruptcy", "chapter 11"),
    "LEGAL": ("lawsuit", "legal", "sec investigation"),
    "PARTNERSHIP": ("partnership", "deal"),
    "RATING": ("upgrade", "downgrade"),
    "GUIDANCE": ("guidance", "outlook"),
    "DIVIDEND": ("dividend", "buyback"),
    "LEADERSHIP": ("ceo", "executive"),
}

POSITIVE_WORDS = frozenset(
    {
        "up", "rise", "gain", "surge", "rally", "beat", "exceed", "strong", "growth",
        "positive", "bullish", "optimistic", "outperform", "upgrade", "profit", "record",
        "soar", "jump",
    }
)
NEGATIVE_WORDS = frozenset(
    {
        "down", "fall", "drop", "decline", "crash", "miss", "weak", "loss", "negative",
        "bearish", "pessimistic", "underperform", "downgrade", "cut", "plunge", "slump",
        "tumble", "sink",
    }
)

_INFLECTIONS = ("", "s", "es", "d", "ed", "ing")


def _inflected(words: frozenset[str]) -> frozenset[str]:
    return frozenset(w + suffix for w in words for suffix in _INFLECTIONS)


_POSITIVE_FORMS = _inflected(POSITIVE_WORDS)
_NEGATIVE_FORMS = _inflected(NEGATIVE_WORDS)


def _text_of(item: NewsItem) -> str:
    return normalize(f"{item.title} {item.summary}")


def badges_for(item: NewsItem) -> tuple[str, ...]:
    """Keyword badges, whole words only, in table order."""
    padded = f" {_text_of(item)} "
    return tuple(
        badge
        for badge, keywords in BADGE_KEYWORDS.items()
        if any(f" {normalize(k)} " in padded for k in keywords)
    )


def sentiment_for(item: NewsItem) -> Sentiment:
    """Provider label when supplied, otherwise positive minus negative words."""
    if item.provider_sentiment is not None:
        return item.provider_sentiment
    words = _text_of(item).split()
    score = sum(1 for w in words if w in _POSITIVE_FORMS) - sum(
        1 for w in words if w in _NEGATIVE_FORMS
    )
    if score > 0:
        return Sentiment.POSITIVE
    if score < 0:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def in_date_range(item: NewsItem, date_range: DateRange, now: datetime) -> bool:
    if date_range == DateRange.ALL:
        return True
    if date_range == DateRange.TODAY:
        return item.published_at.date() == now.astimezone(timezone.utc).date()
    return item.published_at >= now - timedelta(days=date_range.days)


def mentions(item: NewsItem, ticker: str) -> bool:
    ticker = ticker.strip().upper()
    return (
        item.primary_ticker == ticker
        or ticker in item.secondary_tickers
        or ticker in item.provider_tickers
    )


@dataclass(frozen=True)
class NewsResult:
    items: tuple[NewsItem, ...]
    counts: Mapping[str, int]
    errors: tuple[ErrorInfo, ...] = ()
    stale: bool = False


class NewsAggregator:
    """Turns a fan-out news batch into the list the ``/news`` endpoint serves.

    Steps, in order: source filter, ticker resolution (one universe
    snapshot per call), ticker filter, date filter, order-independent
    dedupe, newest-first sort and truncation, then badges and sentiment.
    ``counts`` holds per-provider item counts after filtering.
    """

    def __init__(self, bus: RequestBus, resolver: TickerResolver) -> None:
        self._bus = bus
        self._resolver = resolver

    async def aggregate(
        self,
        scope: NewsScope | None = None,
        limit: int = 50,
        source: str | None = None,
        ticker: str | None = None,
        date_range: DateRange = DateRange.ALL,
        now: datetime | None = None,
    ) -> NewsResult:
        now = now or datetime.now(timezone.utc)
        if scope is None:
            scope = NewsScope.for_ticker(ticker, limit) if ticker else NewsScope.general(limit)

        result = await self._bus.get_news(scope)
        items = list(result.data.items)

        if source:
            needle = source.strip().lower()
            items = [i for i in items if needle in i.source.lower() or needle in i.provider.lower()]

        items = self._resolver.resolve_items(items)

        if ticker:
            items = [i for i in items if mentions(i, ticker)]

        items = [i for i in items if in_date_range(i, date_range, now)]
        items = dedupe(items)
        counts = Counter(i.provider for i in items)

        items.sort(key=lambda i: (i.published_at, i.id), reverse=True)
        items = [
            i.model_copy(update={"badges": badges_for(i), "sentiment": sentiment_for(i)})
            for i in items[:limit]
        ]
        logger.debug(
            "News %s: %d items after filters (%d upstream errors)",
            scope.cache_key(), len(items), len(result.errors),
        )
        return NewsResult(
            items=tuple(items),
            counts=MappingProxyType(dict(counts)),
            errors=result.errors,
            stale=result.stale,
        )
