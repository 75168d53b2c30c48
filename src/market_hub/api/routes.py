"""FastAPI route definitions for the market-hub API."""

from __future__ import annotations

import logging
from typing import Literal
from urllib.parse import urlsplit

import httpx
from fastapi import APIRouter, Depends, Query

import market_hub
from market_hub.api.deps import get_services
from market_hub.api.schemas import (
    HealthData,
    NewsData,
    OhlcData,
    ResolveData,
    ScannerData,
    SymbolsData,
    UniverseStatus,
    envelope,
)
from market_hub.core.exceptions import ClientRequestError
from market_hub.core.models import DateRange, ErrorInfo, Interval, ProviderErrorKind
from market_hub.news.canonical import looks_like_search_page
from market_hub.services import Services

logger = logging.getLogger(__name__)

router = APIRouter()

_TICKER_PATTERN = r"^[A-Za-z0-9^][A-Za-z0-9.\-^]{0,9}$"


# -- News --


@router.get("/news")
async def get_news(
    limit: int = Query(50, ge=1, le=200),
    source: str | None = Query(None, description="Substring of source or provider"),
    ticker: str | None = Query(None, pattern=_TICKER_PATTERN),
    date_range: DateRange = Query(DateRange.ALL, alias="dateRange"),
    services: Services = Depends(get_services),
):
    """Aggregated, deduplicated news with resolved tickers."""
    result = await services.news.aggregate(
        limit=limit,
        source=source,
        ticker=ticker.upper() if ticker else None,
        date_range=date_range,
    )
    data = NewsData(news=list(result.items), counts=dict(result.counts))
    return envelope(
        data,
        result.errors,
        stale=result.stale,
        success=bool(result.items) or not result.errors,
    )


# -- Market data --


@router.get("/data")
async def get_data(
    ticker: str = Query(..., pattern=_TICKER_PATTERN),
    type: Literal["quote", "ohlc"] = Query("quote"),
    interval: Interval = Query(Interval.MIN_5),
    limit: int = Query(100, ge=1, le=5000),
    services: Services = Depends(get_services),
):
    """A single quote, or an OHLC series."""
    symbol = ticker.upper()
    if type == "ohlc":
        result = await services.bus.get_ohlc(symbol, interval, limit)
        data = OhlcData(symbol=symbol, interval=interval.value, candles=list(result.data))
        return envelope(
            data, result.errors, stale=result.stale, success=bool(result.data) or not result.errors
        )

    result = await services.bus.get_quote(symbol)
    errors = list(result.errors)
    if result.data is None and not errors:
        errors.append(
            ErrorInfo(
                kind=ProviderErrorKind.UNAVAILABLE, message=f"no quote available for {symbol}"
            )
        )
    return envelope(result.data, errors, stale=result.stale)


# -- Symbols --


@router.get("/symbols")
async def get_symbols(
    q: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=1000),
    exchange: str | None = Query(None),
    sector: str | None = Query(None),
    services: Services = Depends(get_services),
):
    """Search the symbol universe."""
    snapshot = services.universe.snapshot()
    page, total = snapshot.search(q, limit=limit, exchange=exchange, sector=sector)
    data = SymbolsData(symbols=page, total=total, last_update=snapshot.loaded_at)
    return envelope(data, services.universe.last_errors if not snapshot.loaded_at else ())


# -- Scanner --


@router.get("/scanner")
async def run_scanner(
    preset: str = Query(...),
    limit: int = Query(50, ge=1, le=500),
    min_price: float | None = Query(None, alias="minPrice", ge=0),
    max_price: float | None = Query(None, alias="maxPrice", ge=0),
    min_volume: int | None = Query(None, alias="minVolume", ge=0),
    services: Services = Depends(get_services),
):
    """Run a scanner preset over the scan universe."""
    result = await services.scanner.scan(
        preset,
        limit=limit,
        min_price=min_price,
        max_price=max_price,
        min_volume=min_volume,
    )
    data = ScannerData(
        preset=result.preset.value,
        stocks=list(result.stocks),
        universe_size=result.universe_size,
        total_processed=result.total_processed,
    )
    return envelope(
        data,
        result.errors,
        stale=result.stale,
        success=result.total_processed > 0 or not result.errors,
    )


# -- Health --


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Provider health, universe status and cache statistics."""
    data = HealthData(
        version=market_hub.__version__,
        providers=dict(services.bus.get_health()),
        universe=UniverseStatus(
            size=len(services.universe), loaded_at=services.universe.loaded_at
        ),
        cache=services.cache.stats(),
    )
    return envelope(data)


# -- Redirect resolver --


async def follow_redirects(client: httpx.AsyncClient, url: str, timeout: float) -> str:
    """Final URL after redirects. HEAD first, GET when HEAD is refused or fails."""
    try:
        response = await client.head(url, follow_redirects=True, timeout=timeout)
        if response.status_code < 400:
            return str(response.url)
        logger.debug("HEAD %s answered %d, retrying with GET", url, response.status_code)
    except httpx.HTTPError as e:
        logger.debug("HEAD %s failed (%s), retrying with GET", url, e)

    async with client.stream("GET", url, follow_redirects=True, timeout=timeout) as response:
        return str(response.url)


@router.get("/resolve")
async def resolve_url(
    u: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    """Follow a news link's redirects; search or topic pages are rejected."""
    parts = urlsplit(u)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ClientRequestError(
            "u must be an absolute http(s) URL", context={"param": "u", "value": u}
        )

    try:
        final = await follow_redirects(
            services.client, u, services.config.api.resolve_timeout
        )
    except httpx.HTTPError as e:
        error = ErrorInfo(kind=ProviderErrorKind.NETWORK, message=f"could not resolve {u}: {e}")
        return envelope(ResolveData(ok=False, final=u), [error], success=False)

    if looks_like_search_page(final):
        return envelope(ResolveData(ok=False, final=u))
    return envelope(ResolveData(ok=True, final=final))
