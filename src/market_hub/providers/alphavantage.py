"""Alpha Vantage adapter (quotes, OHLC, news)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence
from zoneinfo import ZoneInfo

from market_hub.core.exceptions import ProviderError
from market_hub.core.models import (
    Candle,
    Capability,
    Interval,
    NewsItem,
    NewsScope,
    ProviderErrorKind,
    Quote,
    ScopeKind,
    Sentiment,
    normalize_series,
)
from market_hub.providers.base import HttpProvider, safe_float, safe_int, utc_now

logger = logging.getLogger(__name__)

_EASTERN = ZoneInfo("America/New_York")
_COMPACT_SIZE = 100

_INTRADAY_MAP: dict[Interval, str] = {
    Interval.MIN_1: "1min",
    Interval.MIN_5: "5min",
    Interval.MIN_15: "15min",
    Interval.HOUR_1: "60min",
}


def _parse_published(value: Any) -> datetime | None:
    """NEWS_SENTIMENT times look like 20240105T103000."""
    if not value:
        return None
    for fmt in ("%Y%m%dT%H%M%S", "%Y%m%dT%H%M"):
        try:
            return datetime.strptime(str(value), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _parse_bar_time(value: str) -> datetime | None:
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=_EASTERN)
        except ValueError:
            continue
    return None


def _label_to_sentiment(label: Any) -> Sentiment | None:
    text = str(label or "").lower()
    if "bullish" in text:
        return Sentiment.POSITIVE
    if "bearish" in text:
        return Sentiment.NEGATIVE
    if text == "neutral":
        return Sentiment.NEUTRAL
    return None


class AlphaVantageProvider(HttpProvider):
    """Alpha Vantage ``/query`` API.

    The free tier allows very few calls per minute, so this provider sits
    last in the default priority order. Throttling is reported inside a
    200 body (``Note`` / ``Information``) and mapped to rate_limit.
    """

    provider_id = "alphavantage"
    capabilities = frozenset({Capability.QUOTES, Capability.OHLC, Capability.NEWS})
    default_base_url = "https://www.alphavantage.co/query"
    key_param = "apikey"
    symbols_per_request = 1

    def _check_payload(self, data: Any, url: str) -> None:
        if not isinstance(data, dict):
            return
        for field in ("Note", "Information"):
            if field in data:
                message = str(data[field])
                lowered = message.lower()
                limited = "rate limit" in lowered or "premium" in lowered
                if "api key" in lowered and not limited:
                    kind = ProviderErrorKind.AUTH
                else:
                    kind = ProviderErrorKind.RATE_LIMIT
                raise self._error(kind, message, url=url)
        if "Error Message" in data:
            message = str(data["Error Message"])
            kind = (
                ProviderErrorKind.AUTH if "apikey" in message.lower() else ProviderErrorKind.SERVER
            )
            raise self._error(kind, message, url=url)

    # --- Quotes ---

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        """One ``GLOBAL_QUOTE`` call per symbol, in order.

        A throttle or auth answer stops the loop; quotes fetched before it
        are still returned.
        """
        quotes: list[Quote] = []
        errors: list[ProviderError] = []
        for symbol in symbols:
            try:
                quote = await self._fetch_one_quote(symbol.upper())
            except ProviderError as e:
                errors.append(e)
                if e.kind in (ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.AUTH):
                    break
                continue
            if quote is not None:
                quotes.append(quote)
        return self._partial(quotes, errors, len(symbols))

    async def _fetch_one_quote(self, symbol: str) -> Quote | None:
        data = await self._get_json(self.base_url, {"function": "GLOBAL_QUOTE", "symbol": symbol})
        row = data.get("Global Quote") if isinstance(data, dict) else None
        if not row:
            return None
        return self._build(
            Quote,
            symbol=row.get("01. symbol") or symbol,
            price=safe_float(row.get("05. price")),
            change=safe_float(row.get("09. change")) or 0.0,
            change_percent=safe_float(row.get("10. change percent")) or 0.0,
            volume=safe_int(row.get("06. volume")) or 0,
            previous_close=safe_float(row.get("08. previous close")),
            updated_at=utc_now(),
            provider_id=self.provider_id,
        )

    # --- OHLC ---

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        outputsize = "compact" if limit <= _COMPACT_SIZE else "full"
        if interval == Interval.DAY_1:
            params = {"function": "TIME_SERIES_DAILY", "symbol": symbol.upper()}
            series_key = "Time Series (Daily)"
        else:
            native = _INTRADAY_MAP[interval]
            params = {
                "function": "TIME_SERIES_INTRADAY",
                "symbol": symbol.upper(),
                "interval": native,
            }
            series_key = f"Time Series ({native})"
        params["outputsize"] = outputsize

        data = await self._get_json(self.base_url, params)
        series = data.get(series_key) if isinstance(data, dict) else None
        if series is None:
            raise self._error(ProviderErrorKind.SCHEMA, f"missing {series_key!r}")

        candles = []
        for stamp, bar in series.items():
            candle = self._build(
                Candle,
                time=_parse_bar_time(stamp),
                open=safe_float(bar.get("1. open")),
                high=safe_float(bar.get("2. high")),
                low=safe_float(bar.get("3. low")),
                close=safe_float(bar.get("4. close")),
                volume=safe_float(bar.get("5. volume")) or 0.0,
            )
            if candle is not None:
                candles.append(candle)
        return normalize_series(candles, limit)

    # --- News ---

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        params: dict[str, Any] = {"function": "NEWS_SENTIMENT", "limit": scope.limit}
        if scope.kind == ScopeKind.TICKER:
            params["tickers"] = scope.value
        elif scope.kind == ScopeKind.TOPIC:
            params["topics"] = scope.value

        data = await self._get_json(self.base_url, params)
        feed = data.get("feed") if isinstance(data, dict) else None
        if not isinstance(feed, list):
            raise self._error(ProviderErrorKind.SCHEMA, "NEWS_SENTIMENT payload has no feed")

        items = []
        for row in feed:
            tickers = [
                t.get("ticker")
                for t in row.get("ticker_sentiment") or []
                if isinstance(t, dict) and t.get("ticker")
            ]
            item = self._news_item(
                title=row.get("title"),
                url=row.get("url"),
                published_at=_parse_published(row.get("time_published")),
                summary=row.get("summary"),
                source=row.get("source"),
                provider_tickers=tickers,
                provider_sentiment=_label_to_sentiment(row.get("overall_sentiment_label")),
            )
            if item is not None:
                items.append(item)
        return items[: scope.limit]
