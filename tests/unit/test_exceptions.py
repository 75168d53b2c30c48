"""Tests for market_hub.core.exceptions."""

import pytest

from market_hub.core.exceptions import (
    ClientRequestError,
    ConfigError,
    MarketHubError,
    ProviderError,
    ProviderUnavailable,
    UniverseLoadError,
)


class TestExceptionHierarchy:
    """Verify the exception class hierarchy."""

    def test_config_is_subclass(self):
        assert issubclass(ConfigError, MarketHubError)

    def test_client_request_is_subclass(self):
        assert issubclass(ClientRequestError, MarketHubError)

    def test_provider_error_is_subclass(self):
        assert issubclass(ProviderError, MarketHubError)

    def test_unavailable_is_a_provider_error(self):
        assert issubclass(ProviderUnavailable, ProviderError)
        assert issubclass(ProviderUnavailable, MarketHubError)

    def test_universe_load_is_subclass(self):
        assert issubclass(UniverseLoadError, MarketHubError)


class TestExceptionContext:
    """Verify context dict behavior."""

    def test_context_preserved(self):
        exc = ClientRequestError("bad ticker", context={"param": "ticker", "value": "??"})
        assert exc.context["param"] == "ticker"
        assert exc.context["value"] == "??"

    def test_default_context_is_empty_dict(self):
        exc = ConfigError("missing")
        assert exc.context == {}

    def test_message_preserved(self):
        exc = UniverseLoadError("no records")
        assert str(exc) == "no records"


class TestProviderError:
    def test_kind_and_status(self):
        exc = ProviderError(
            "fmp: HTTP 429", kind="rate_limit", status=429, context={"provider": "fmp"}
        )
        assert exc.kind == "rate_limit"
        assert exc.status == 429
        assert exc.context["provider"] == "fmp"

    def test_status_optional(self):
        exc = ProviderError("finnhub: timeout", kind="network")
        assert exc.status is None

    def test_kind_is_keyword_only(self):
        with pytest.raises(TypeError):
            ProviderError("oops", "server")

    def test_catchable_as_base(self):
        with pytest.raises(MarketHubError):
            raise ProviderUnavailable("fmp: circuit open", kind="unavailable")
