"""Financial Modeling Prep adapter (quotes, OHLC, news, symbols)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence
from zoneinfo import ZoneInfo

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
from market_hub.providers.base import (
    HttpProvider,
    chunked,
    from_epoch,
    safe_float,
    safe_int,
    utc_now,
)

logger = logging.getLogger(__name__)

_BATCH_SIZE = 100
_EASTERN = ZoneInfo("America/New_York")
_US_EXCHANGES = {"NASDAQ", "NYSE", "AMEX"}
_TYPE_MAP = {"stock": AssetType.STOCK, "etf": AssetType.ETF}

# Map our intervals to FMP historical-chart interval strings
_INTERVAL_MAP: dict[Interval, str] = {
    Interval.MIN_1: "1min",
    Interval.MIN_5: "5min",
    Interval.MIN_15: "15min",
    Interval.HOUR_1: "1hour",
}


def _parse_eastern(value: Any) -> datetime | None:
    """FMP timestamps are naive US/Eastern wall-clock strings."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            naive = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return naive.replace(tzinfo=_EASTERN).astimezone(timezone.utc)
    return None


class FMPProvider(HttpProvider):
    """Financial Modeling Prep v3 REST API.

    Quotes are batched up to 100 symbols per call. Historical series come
    back newest-first and are reversed.
    """

    provider_id = "fmp"
    capabilities = frozenset(
        {Capability.QUOTES, Capability.OHLC, Capability.NEWS, Capability.SYMBOLS}
    )
    default_base_url = "https://financialmodelingprep.com/api/v3"
    key_param = "apikey"
    symbols_per_request = _BATCH_SIZE

    def _check_payload(self, data: Any, url: str) -> None:
        if not isinstance(data, dict) or "Error Message" not in data:
            return
        message = str(data["Error Message"])
        lowered = message.lower()
        if "api key" in lowered or "apikey" in lowered:
            kind = ProviderErrorKind.AUTH
        elif "limit" in lowered:
            kind = ProviderErrorKind.RATE_LIMIT
        else:
            kind = ProviderErrorKind.SERVER
        raise self._error(kind, message, url=url)

    # --- Quotes ---

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        quotes: list[Quote] = []
        for batch in chunked(list(symbols), _BATCH_SIZE):
            url = f"{self.base_url}/quote/{','.join(batch)}"
            rows = await self._get_json(url)
            if not isinstance(rows, list):
                raise self._error(ProviderErrorKind.SCHEMA, "quote payload is not a list", url=url)
            for row in rows:
                quote = self._quote_from_row(row)
                if quote is not None:
                    quotes.append(quote)
        return quotes

    def _quote_from_row(self, row: dict) -> Quote | None:
        return self._build(
            Quote,
            symbol=row.get("symbol", ""),
            name=row.get("name"),
            price=safe_float(row.get("price")),
            change=safe_float(row.get("change")) or 0.0,
            change_percent=safe_float(row.get("changesPercentage")) or 0.0,
            volume=safe_int(row.get("volume")) or 0,
            average_volume=safe_int(row.get("avgVolume")),
            market_cap=safe_float(row.get("marketCap")),
            high52=safe_float(row.get("yearHigh")),
            low52=safe_float(row.get("yearLow")),
            previous_close=safe_float(row.get("previousClose")),
            updated_at=from_epoch(row.get("timestamp")) or utc_now(),
            provider_id=self.provider_id,
        )

    # --- OHLC ---

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        symbol = symbol.upper()
        if interval == Interval.DAY_1:
            url = f"{self.base_url}/historical-price-full/{symbol}"
            payload = await self._get_json(url, {"timeseries": limit})
            rows = payload.get("historical", []) if isinstance(payload, dict) else []
        else:
            url = f"{self.base_url}/historical-chart/{_INTERVAL_MAP[interval]}/{symbol}"
            rows = await self._get_json(url)
        if not isinstance(rows, list):
            raise self._error(ProviderErrorKind.SCHEMA, "chart payload is not a list", url=url)

        candles = []
        for row in reversed(rows):
            candle = self._build(
                Candle,
                time=_parse_eastern(row.get("date")),
                open=safe_float(row.get("open")),
                high=safe_float(row.get("high")),
                low=safe_float(row.get("low")),
                close=safe_float(row.get("close")),
                volume=safe_float(row.get("volume")) or 0.0,
            )
            if candle is not None:
                candles.append(candle)
        return normalize_series(candles, limit)

    # --- News ---

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        params: dict[str, Any] = {"limit": scope.limit}
        if scope.kind == ScopeKind.TICKER:
            params["tickers"] = scope.value
        rows = await self._get_json(f"{self.base_url}/stock_news", params)
        if not isinstance(rows, list):
            raise self._error(ProviderErrorKind.SCHEMA, "news payload is not a list")

        items = []
        for row in rows:
            item = self._news_item(
                title=row.get("title"),
                url=row.get("url"),
                published_at=_parse_eastern(row.get("publishedDate")),
                summary=row.get("text"),
                source=row.get("site"),
                provider_tickers=[row["symbol"]] if row.get("symbol") else [],
            )
            if item is None:
                continue
            if scope.kind == ScopeKind.TOPIC and not _mentions(item, scope.value or ""):
                continue
            items.append(item)
        return items

    # --- Symbols ---

    async def fetch_symbols(self) -> list[SymbolRecord]:
        rows = await self._get_json(f"{self.base_url}/stock/list")
        if not isinstance(rows, list):
            raise self._error(ProviderErrorKind.SCHEMA, "symbol list is not a list")

        records = []
        for row in rows:
            exchange = str(row.get("exchangeShortName") or "").upper()
            asset_type = _TYPE_MAP.get(str(row.get("type") or "").lower())
            if exchange not in _US_EXCHANGES or asset_type is None:
                continue
            if row.get("isActivelyTrading") is False:
                continue
            record = self._build(
                SymbolRecord,
                symbol=row.get("symbol", ""),
                company_name=row.get("name") or row.get("symbol", ""),
                exchange=exchange,
                asset_type=asset_type,
                market_cap=safe_float(row.get("marketCap")),
            )
            if record is not None:
                records.append(record)
        logger.info("fmp: %d symbols listed", len(records))
        return records


def _mentions(item: NewsItem, topic: str) -> bool:
    topic = topic.lower()
    return topic in item.title.lower() or topic in item.summary.lower()
