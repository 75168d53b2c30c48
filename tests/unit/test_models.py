"""Tests for market_hub.core.models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from market_hub.core.models import (
    Candle,
    DateRange,
    NewsItem,
    NewsScope,
    Quote,
    Resolution,
    ScopeKind,
    SymbolRecord,
    normalize_series,
)

T0 = datetime(2024, 1, 5, 14, 30, tzinfo=timezone.utc)


class TestQuote:
    def test_symbol_uppercased(self, make_quote):
        assert make_quote(symbol=" aapl ").symbol == "AAPL"

    def test_invalid_symbol_rejected(self, make_quote):
        with pytest.raises(ValidationError, match="Invalid ticker"):
            make_quote(symbol="NOT A TICKER")

    def test_price_must_be_positive(self, make_quote):
        with pytest.raises(ValidationError, match="price must be > 0"):
            make_quote(price=0)

    def test_negative_volume_rejected(self, make_quote):
        with pytest.raises(ValidationError, match="volume"):
            make_quote(volume=-1)

    def test_naive_time_treated_as_utc(self, make_quote):
        q = make_quote(updated_at=datetime(2024, 1, 5, 9, 30))
        assert q.updated_at.tzinfo == timezone.utc
        assert q.updated_at.hour == 9

    def test_aware_time_converted_to_utc(self, make_quote):
        eastern = timezone(timedelta(hours=-5))
        q = make_quote(updated_at=datetime(2024, 1, 5, 9, 30, tzinfo=eastern))
        assert q.updated_at == datetime(2024, 1, 5, 14, 30, tzinfo=timezone.utc)

    def test_rvol(self, make_quote):
        assert make_quote(volume=3000, average_volume=1000).rvol == 3.0

    def test_rvol_unknown_without_average(self, make_quote):
        assert make_quote(volume=3000).rvol is None
        assert make_quote(volume=3000, average_volume=0).rvol is None

    def test_frozen(self, make_quote):
        q = make_quote()
        with pytest.raises(ValidationError):
            q.price = 1.0


class TestCandle:
    def test_valid(self):
        c = Candle(time=T0, open=10, high=12, low=9, close=11, volume=100)
        assert c.close == 11

    def test_high_below_body_rejected(self):
        with pytest.raises(ValidationError, match="range inconsistent"):
            Candle(time=T0, open=10, high=10.5, low=9, close=11)

    def test_low_above_body_rejected(self):
        with pytest.raises(ValidationError, match="range inconsistent"):
            Candle(time=T0, open=10, high=12, low=10.5, close=11)


class TestNormalizeSeries:
    def _candle(self, minutes: int, close: float = 10.0) -> Candle:
        return Candle(
            time=T0 + timedelta(minutes=minutes), open=close, high=close, low=close, close=close
        )

    def test_sorted_ascending(self):
        series = normalize_series([self._candle(10), self._candle(0), self._candle(5)])
        assert [c.time for c in series] == sorted(c.time for c in series)

    def test_duplicate_timestamps_keep_last(self):
        series = normalize_series([self._candle(0, 10.0), self._candle(0, 11.0)])
        assert len(series) == 1
        assert series[0].close == 11.0

    def test_limit_keeps_newest(self):
        series = normalize_series([self._candle(m) for m in range(10)], limit=3)
        assert [c.time for c in series] == [T0 + timedelta(minutes=m) for m in (7, 8, 9)]

    def test_zero_limit(self):
        assert normalize_series([self._candle(0)], limit=0) == []


class TestNewsItem:
    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError, match="title"):
            NewsItem(id="x", title="   ", published_at=T0)

    def test_provider_tickers_normalized(self):
        item = NewsItem(
            id="x", title="t", published_at=T0, provider_tickers=["aapl", " msft", "AAPL", ""]
        )
        assert item.provider_tickers == ("AAPL", "MSFT")

    def test_defaults(self):
        item = NewsItem(id="x", title="t", published_at=T0)
        assert item.primary_ticker is None
        assert item.ticker_reason == "general"
        assert item.sentiment == "neutral"


class TestNewsScope:
    def test_general(self):
        scope = NewsScope.general(limit=20)
        assert scope.kind == ScopeKind.GENERAL
        assert scope.cache_key() == "general::20"

    def test_for_ticker_uppercases(self):
        scope = NewsScope.for_ticker(" tsla ")
        assert scope.value == "TSLA"
        assert scope.cache_key() == "ticker:TSLA:50"

    def test_ticker_scope_requires_value(self):
        with pytest.raises(ValidationError, match="requires a value"):
            NewsScope(kind=ScopeKind.TICKER)


class TestDateRange:
    def test_days(self):
        assert DateRange.DAYS_7.days == 7
        assert DateRange.DAYS_30.days == 30

    def test_no_days_for_all_and_today(self):
        assert DateRange.ALL.days is None
        assert DateRange.TODAY.days is None


class TestSymbolRecord:
    def test_symbol_uppercased(self):
        r = SymbolRecord(symbol="brk.b", company_name="Berkshire Hathaway", exchange="NYSE")
        assert r.symbol == "BRK.B"


class TestResolution:
    def test_general_by_default(self):
        assert Resolution().is_general

    def test_with_primary(self):
        r = Resolution(primary="TSLA", confidence=0.8, reason="exact_company_name/title")
        assert not r.is_general
