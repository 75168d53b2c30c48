"""Pydantic data models - the system's type contracts."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import StrEnum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# --- Type Aliases ---

Ticker = str
ProviderId = str

_TICKER_RE = re.compile(r"^[A-Z0-9^][A-Z0-9.\-^]{0,9}$")

# --- Enumerations ---


class Interval(StrEnum):
    """Candle intervals accepted by every OHLC adapter."""

    MIN_1 = "1m"
    MIN_5 = "5m"
    MIN_15 = "15m"
    HOUR_1 = "1h"
    DAY_1 = "1d"


class Sentiment(StrEnum):
    POSITIVE = "pos"
    NEGATIVE = "neg"
    NEUTRAL = "neutral"


class ProviderErrorKind(StrEnum):
    """Failure taxonomy shared by adapters, breaker, and the API envelope."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    SCHEMA = "schema"
    UNAVAILABLE = "unavailable"
    CLIENT = "client"


class Capability(StrEnum):
    """Operations an adapter can serve."""

    QUOTES = "quotes"
    OHLC = "ohlc"
    NEWS = "news"
    SYMBOLS = "symbols"


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class HealthState(StrEnum):
    """Externally visible provider state (health endpoint)."""

    HEALTHY = "healthy"
    BACKOFF = "backoff"
    OPEN = "open"
    DISABLED = "disabled"


class ScopeKind(StrEnum):
    GENERAL = "general"
    TICKER = "ticker"
    TOPIC = "topic"


class AssetType(StrEnum):
    STOCK = "stock"
    ETF = "etf"
    ADR = "adr"
    REIT = "reit"


class CacheCategory(StrEnum):
    QUOTE = "quote"
    OHLC = "ohlc"
    NEWS = "news"
    SYMBOLS = "symbols"
    HEALTH = "health"


class DateRange(StrEnum):
    """News date filters."""

    ALL = "all"
    TODAY = "today"
    DAYS_7 = "7d"
    DAYS_14 = "14d"
    DAYS_30 = "30d"

    @property
    def days(self) -> int | None:
        if self in (DateRange.ALL, DateRange.TODAY):
            return None
        return int(self.value[:-1])


class MatchReason(StrEnum):
    """Strongest evidence behind a resolved ticker."""

    SOURCE = "source"
    CASHTAG_TITLE = "cashtag/title"
    CASHTAG_SUMMARY = "cashtag/summary"
    LITERAL_TITLE = "ticker_literal/title"
    LITERAL_SUMMARY = "ticker_literal/summary"
    URL = "url"
    NAME_TITLE = "exact_company_name/title"
    NAME_SUMMARY = "exact_company_name/summary"
    ALIAS_TITLE = "alias/title"
    ALIAS_SUMMARY = "alias/summary"
    PARTIAL_TITLE = "partial/title"
    PARTIAL_SUMMARY = "partial/summary"
    GENERAL = "general"


class ScannerPreset(StrEnum):
    MOMENTUM = "momentum"
    VOLUME = "volume"
    OVERSOLD = "oversold"
    BREAKOUT = "breakout"
    GAP = "gap"
    NEWS = "news"


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


def _upper_ticker(v: str) -> str:
    v = v.strip().upper()
    if not _TICKER_RE.match(v):
        raise ValueError(f"Invalid ticker symbol: {v!r}")
    return v


# --- Market Data Models ---


class Quote(BaseModel):
    """Normalized point-in-time quote from one provider."""

    model_config = ConfigDict(frozen=True)

    symbol: Ticker
    name: str | None = None
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    average_volume: int | None = None
    market_cap: float | None = None
    high52: float | None = None
    low52: float | None = None
    previous_close: float | None = None
    updated_at: datetime
    provider_id: ProviderId

    @field_validator("symbol")
    @classmethod
    def symbol_uppercase(cls, v: str) -> str:
        return _upper_ticker(v)

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"price must be > 0, got {v}")
        return v

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("volume must be >= 0")
        return v

    @field_validator("updated_at")
    @classmethod
    def updated_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def rvol(self) -> float | None:
        """Relative volume: volume / average volume."""
        if not self.average_volume:
            return None
        return self.volume / self.average_volume


class Candle(BaseModel):
    """A single OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @field_validator("time")
    @classmethod
    def time_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("volume must be >= 0")
        return v

    @model_validator(mode="after")
    def range_consistent(self) -> Candle:
        if not (self.low <= min(self.open, self.close) and max(self.open, self.close) <= self.high):
            raise ValueError(
                f"candle range inconsistent: o={self.open} h={self.high} "
                f"l={self.low} c={self.close}"
            )
        return self


def normalize_series(candles: Iterable[Candle], limit: int | None = None) -> list[Candle]:
    """Sort ascending by time, drop duplicate timestamps, keep the newest `limit`.

    When two candles share a timestamp the later one in the input wins.
    """
    by_time: dict[datetime, Candle] = {}
    for c in candles:
        by_time[c.time] = c
    series = [by_time[t] for t in sorted(by_time)]
    if limit is not None and limit >= 0:
        series = series[-limit:] if limit else []
    return series


class NewsItem(BaseModel):
    """A normalized news article."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    summary: str = ""
    url: str = ""
    published_at: datetime
    source: str = ""
    provider: ProviderId = ""
    provider_tickers: tuple[Ticker, ...] = ()
    provider_sentiment: Sentiment | None = None
    primary_ticker: Ticker | None = None
    secondary_tickers: tuple[Ticker, ...] = ()
    ticker_confidence: float = 0.0
    ticker_reason: str = MatchReason.GENERAL.value
    sentiment: Sentiment = Sentiment.NEUTRAL
    badges: tuple[str, ...] = ()

    @field_validator("title")
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("published_at")
    @classmethod
    def published_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("provider_tickers", mode="before")
    @classmethod
    def provider_tickers_upper(cls, v: Iterable[str]) -> tuple[str, ...]:
        seen: list[str] = []
        for t in v or ():
            t = str(t).strip().upper()
            if t and t not in seen:
                seen.append(t)
        return tuple(seen)


class NewsScope(BaseModel):
    """What a news fetch is about: everything, one ticker, or one topic."""

    model_config = ConfigDict(frozen=True)

    kind: ScopeKind = ScopeKind.GENERAL
    value: str | None = None
    limit: int = 50

    @model_validator(mode="after")
    def value_required_for_ticker_and_topic(self) -> NewsScope:
        if self.kind != ScopeKind.GENERAL and not self.value:
            raise ValueError(f"scope kind {self.kind.value!r} requires a value")
        return self

    @classmethod
    def general(cls, limit: int = 50) -> NewsScope:
        return cls(kind=ScopeKind.GENERAL, limit=limit)

    @classmethod
    def for_ticker(cls, ticker: str, limit: int = 50) -> NewsScope:
        return cls(kind=ScopeKind.TICKER, value=ticker.strip().upper(), limit=limit)

    def cache_key(self) -> str:
        return f"{self.kind.value}:{self.value or ''}:{self.limit}"


# --- Symbol Models ---


class SymbolRecord(BaseModel):
    """One tradable symbol in the universe."""

    model_config = ConfigDict(frozen=True)

    symbol: Ticker
    company_name: str
    exchange: str
    asset_type: AssetType = AssetType.STOCK
    sector: str | None = None
    industry: str | None = None
    market_cap: float | None = None
    aliases: tuple[str, ...] = ()
    active: bool = True
    loaded_at: datetime | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_uppercase(cls, v: str) -> str:
        return _upper_ticker(v)


class Resolution(BaseModel):
    """Ticker resolver output for one article."""

    model_config = ConfigDict(frozen=True)

    primary: Ticker | None = None
    secondaries: tuple[Ticker, ...] = ()
    confidence: float = 0.0
    reason: str = MatchReason.GENERAL.value
    scores: dict[str, float] = {}

    @property
    def is_general(self) -> bool:
        return self.primary is None


# --- Health & Diagnostics ---


class ProviderHealth(BaseModel):
    """Snapshot of one provider's breaker and limiter state."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderId
    state: HealthState = HealthState.HEALTHY
    consecutive_failures: int = 0
    last_error: str | None = None
    backoff_until: datetime | None = None
    tokens: float = 0.0
    tokens_refilled_at: datetime | None = None
    last_success: datetime | None = None
    attempts: int = 0
    successes: int = 0
    errors: int = 0


class ErrorInfo(BaseModel):
    """One diagnostic entry in the response `errors[]` channel."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderId | None = None
    kind: ProviderErrorKind
    message: str
    status: int | None = None
    stale: bool = False


# --- Scanner Models ---


class ScanHit(BaseModel):
    """One quote that passed a scanner preset, with derived metrics."""

    model_config = ConfigDict(frozen=True)

    symbol: Ticker
    name: str | None = None
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    average_volume: int | None = None
    rvol: float | None = None
    gap_percent: float = 0.0
    market_cap: float | None = None
    news_count: int = 0
    provider_id: ProviderId
    updated_at: datetime


class ScanResult(BaseModel):
    """Scanner output: ranked hits plus what was examined to find them."""

    model_config = ConfigDict(frozen=True)

    preset: ScannerPreset
    stocks: tuple[ScanHit, ...] = ()
    universe_size: int = 0
    total_processed: int = 0
    errors: tuple[ErrorInfo, ...] = ()
    stale: bool = False
