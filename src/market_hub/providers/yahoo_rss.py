"""Yahoo Finance RSS headline adapter (news only, no API key)."""

from __future__ import annotations

import calendar
import logging
import re
from datetime import datetime, timezone
from typing import Any

import feedparser

from market_hub.core.models import Capability, NewsItem, NewsScope, ProviderErrorKind, ScopeKind
from market_hub.providers.base import HttpProvider

logger = logging.getLogger(__name__)

_GENERAL_SYMBOLS = ("^GSPC", "^DJI", "^IXIC")
_EXCHANGE_TAG_RE = re.compile(r"\((?:NASDAQ|NYSE|AMEX):\s*([A-Z]{1,5}(?:[.-][A-Z])?)\)")


def _entry_time(entry: Any) -> datetime | None:
    parsed = getattr(entry, "published_parsed", None) or getattr(entry, "updated_parsed", None)
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def extract_exchange_tickers(text: str) -> list[str]:
    """Tickers written as "(NASDAQ: AAPL)" in feed text."""
    return _EXCHANGE_TAG_RE.findall(text or "")


class YahooRSSProvider(HttpProvider):
    """Yahoo Finance ``/rss/2.0/headline`` feeds parsed with feedparser.

    General scope reads the S&P 500, Dow and Nasdaq index feeds in a
    single request; ticker scope reads that ticker's feed.
    """

    provider_id = "yahoo_rss"
    capabilities = frozenset({Capability.NEWS})
    default_base_url = "https://feeds.finance.yahoo.com/rss/2.0/headline"
    key_param = None

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        if scope.kind == ScopeKind.TICKER:
            symbols = scope.value or ""
        else:
            symbols = ",".join(_GENERAL_SYMBOLS)
        params = {"s": symbols, "region": "US", "lang": "en-US"}

        response = await self._request(self.base_url, params)
        parsed = feedparser.parse(response.text)
        if parsed.bozo and not parsed.entries:
            raise self._error(
                ProviderErrorKind.SCHEMA,
                f"unparseable feed: {parsed.get('bozo_exception')}",
                url=self.base_url,
            )

        items = []
        for entry in parsed.entries:
            title = getattr(entry, "title", "")
            summary = getattr(entry, "summary", "")
            item = self._news_item(
                title=title,
                url=getattr(entry, "link", ""),
                published_at=_entry_time(entry),
                summary=summary,
                source=getattr(entry, "source", {}).get("title") or "Yahoo Finance",
                provider_tickers=extract_exchange_tickers(f"{title} {summary}"),
            )
            if item is None:
                continue
            if scope.kind == ScopeKind.TOPIC:
                topic = (scope.value or "").lower()
                if topic not in item.title.lower() and topic not in item.summary.lower():
                    continue
            items.append(item)
        return items[: scope.limit]
