"""Finnhub adapter (quotes, OHLC, news, symbols)."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Sequence

from market_hub.core.exceptions import ProviderError
from market_hub.core.models import (
    AssetType,
    Candle,
    Capability,
    Interval,
    NewsItem,
    NewsScope,
    ProviderErrorKind,
    Quote,
    ScopeKind,
    SymbolRecord,
    normalize_series,
)
from market_hub.providers.base import HttpProvider, from_epoch, safe_float, utc_now

logger = logging.getLogger(__name__)

_RESOLUTION_MAP: dict[Interval, str] = {
    Interval.MIN_1: "1",
    Interval.MIN_5: "5",
    Interval.MIN_15: "15",
    Interval.HOUR_1: "60",
    Interval.DAY_1: "D",
}

_INTERVAL_SECONDS: dict[Interval, int] = {
    Interval.MIN_1: 60,
    Interval.MIN_5: 300,
    Interval.MIN_15: 900,
    Interval.HOUR_1: 3600,
    Interval.DAY_1: 86400,
}

_MIC_MAP = {"XNAS": "NASDAQ", "XNYS": "NYSE", "XASE": "AMEX", "ARCX": "NYSE"}

_TYPE_MAP = {
    "common stock": AssetType.STOCK,
    "etp": AssetType.ETF,
    "etf": AssetType.ETF,
    "adr": AssetType.ADR,
    "reit": AssetType.REIT,
}

_COMPANY_NEWS_DAYS = 7


class FinnhubProvider(HttpProvider):
    """Finnhub v1 REST API.

    The quote endpoint takes one symbol per call, so a quote request fans
    out one call per symbol. A quote is only valid when ``c > 0``.
    Finnhub quotes carry no volume or 52-week range.
    """

    provider_id = "finnhub"
    capabilities = frozenset(
        {Capability.QUOTES, Capability.OHLC, Capability.NEWS, Capability.SYMBOLS}
    )
    default_base_url = "https://finnhub.io/api/v1"
    key_param = "token"
    symbols_per_request = 1

    def _check_payload(self, data: Any, url: str) -> None:
        if not isinstance(data, dict) or "error" not in data:
            return
        message = str(data["error"])
        lowered = message.lower()
        if "api key" in lowered or "access" in lowered:
            kind = ProviderErrorKind.AUTH
        elif "limit" in lowered:
            kind = ProviderErrorKind.RATE_LIMIT
        else:
            kind = ProviderErrorKind.SERVER
        raise self._error(kind, message, url=url)

    # --- Quotes ---

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        """Fetch one quote per symbol concurrently.

        Partial results are returned when some symbols fail, unless nothing
        succeeded or an auth failure occurred, in which case the first
        error is raised.
        """
        results = await asyncio.gather(
            *(self._fetch_one_quote(s.upper()) for s in symbols),
            return_exceptions=True,
        )
        quotes: list[Quote] = []
        errors: list[ProviderError] = []
        for result in results:
            if isinstance(result, ProviderError):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                quotes.append(result)
        return self._partial(quotes, errors, len(symbols))

    async def _fetch_one_quote(self, symbol: str) -> Quote | None:
        data = await self._get_json(f"{self.base_url}/quote", {"symbol": symbol})
        if not isinstance(data, dict):
            raise self._error(ProviderErrorKind.SCHEMA, "quote payload is not an object")
        price = safe_float(data.get("c"))
        if not price or price <= 0:
            return None
        return self._build(
            Quote,
            symbol=symbol,
            price=price,
            change=safe_float(data.get("d")) or 0.0,
            change_percent=safe_float(data.get("dp")) or 0.0,
            previous_close=safe_float(data.get("pc")),
            updated_at=from_epoch(data.get("t")) or utc_now(),
            provider_id=self.provider_id,
        )

    # --- OHLC ---

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        now = utc_now()
        # Lookback covers nights and weekends for intraday resolutions
        span = _INTERVAL_SECONDS[interval] * max(limit, 1)
        factor = 2 if interval == Interval.DAY_1 else 4
        lookback = max(timedelta(seconds=span * factor), timedelta(days=4))
        params = {
            "symbol": symbol.upper(),
            "resolution": _RESOLUTION_MAP[interval],
            "from": int((now - lookback).timestamp()),
            "to": int(now.timestamp()),
        }
        url = f"{self.base_url}/stock/candle"
        data = await self._get_json(url, params)
        if not isinstance(data, dict):
            raise self._error(ProviderErrorKind.SCHEMA, "candle payload is not an object", url=url)
        if data.get("s") == "no_data":
            return []
        if data.get("s") != "ok":
            raise self._error(ProviderErrorKind.SCHEMA, f"candle status {data.get('s')!r}", url=url)

        columns = [data.get(k) or [] for k in ("t", "o", "h", "l", "c", "v")]
        candles = []
        for t, o, h, l, c, v in zip(*columns):
            candle = self._build(
                Candle,
                time=from_epoch(t),
                open=o,
                high=h,
                low=l,
                close=c,
                volume=safe_float(v) or 0.0,
            )
            if candle is not None:
                candles.append(candle)
        return normalize_series(candles, limit)

    # --- News ---

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        if scope.kind == ScopeKind.TICKER:
            today = utc_now().date()
            rows = await self._get_json(
                f"{self.base_url}/company-news",
                {
                    "symbol": scope.value,
                    "from": (today - timedelta(days=_COMPANY_NEWS_DAYS)).isoformat(),
                    "to": today.isoformat(),
                },
            )
        else:
            rows = await self._get_json(
                f"{self.base_url}/news", {"category": "general", "minId": 0}
            )
        if not isinstance(rows, list):
            raise self._error(ProviderErrorKind.SCHEMA, "news payload is not a list")

        items = []
        for row in rows:
            related = str(row.get("related") or "")
            item = self._news_item(
                title=row.get("headline"),
                url=row.get("url"),
                published_at=from_epoch(row.get("datetime")),
                summary=row.get("summary"),
                source=row.get("source"),
                provider_tickers=[t for t in related.split(",") if t.strip()],
            )
            if item is None:
                continue
            if scope.kind == ScopeKind.TOPIC:
                topic = (scope.value or "").lower()
                if topic not in item.title.lower() and topic not in item.summary.lower():
                    continue
            items.append(item)
        return items[: scope.limit]

    # --- Symbols ---

    async def fetch_symbols(self) -> list[SymbolRecord]:
        rows = await self._get_json(f"{self.base_url}/stock/symbol", {"exchange": "US"})
        if not isinstance(rows, list):
            raise self._error(ProviderErrorKind.SCHEMA, "symbol list is not a list")

        records = []
        for row in rows:
            exchange = _MIC_MAP.get(str(row.get("mic") or "").upper())
            asset_type = _TYPE_MAP.get(str(row.get("type") or "").lower())
            if exchange is None or asset_type is None:
                continue
            record = self._build(
                SymbolRecord,
                symbol=row.get("symbol", ""),
                company_name=row.get("description") or row.get("symbol", ""),
                exchange=exchange,
                asset_type=asset_type,
            )
            if record is not None:
                records.append(record)
        logger.info("finnhub: %d symbols listed", len(records))
        return records
