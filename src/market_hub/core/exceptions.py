"""Custom exception hierarchy for market-hub."""

from typing import Any


class MarketHubError(Exception):
    """Base exception for all market-hub errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(MarketHubError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str - the config field that failed validation
        value: Any - the invalid value (redacted for secrets)
    """


class ClientRequestError(MarketHubError):
    """Malformed request from an API or CLI caller.

    Policy: surface as HTTP 400. Never retried.

    Context keys:
        param: str - the offending request parameter
        value: Any - the value that was rejected
    """


class ProviderError(MarketHubError):
    """An upstream provider call failed.

    Raised by adapters, and by the provider manager for missed deadlines
    and unparseable payloads. The manager feeds it to the circuit breaker
    and fails over to the next provider.

    Policy:
        auth - disable the provider (long breaker backoff)
        rate_limit / server / network - breaker backoff, try next provider
        schema - treated as server by the breaker

    Context keys:
        provider: str - provider id
        url: str - the URL that was being fetched (API key stripped)
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        status: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.kind = kind
        self.status = status


class ProviderUnavailable(ProviderError):
    """The provider was skipped without an outbound call.

    Raised when the breaker is open or the token bucket is empty.

    Context keys:
        provider: str - provider id
        backoff_until: str | None - ISO-8601 instant the breaker reopens
    """


class UniverseLoadError(MarketHubError):
    """The symbol universe could not be loaded.

    Policy: raised only when no snapshot has ever been loaded. Later
    refresh failures are logged and the previous snapshot stays active.

    Context keys:
        errors: list[dict] - per-provider diagnostics
    """
