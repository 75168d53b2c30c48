"""Provider adapter protocol and the shared httpx-backed base class.

Architecture
------------
Every upstream data source is wrapped by an adapter that speaks its API
and emits the canonical domain models:

    Upstream JSON/RSS → ProviderAdapter → Quote / Candle / NewsItem / SymbolRecord

Adapters are deliberately thin:

- They do not retry, rate-limit, or cache. The provider manager owns that.
- They make one upstream request per ``symbols_per_request`` quote symbols
  (one per call everywhere else); the manager charges a token for each.
- Every failure is translated into ``ProviderError`` with a ``kind`` from
  ``ProviderErrorKind``.
- Rows that fail model validation are dropped, never propagated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterator, Protocol, Sequence, TypeVar, runtime_checkable

import httpx
from pydantic import BaseModel, ValidationError

from market_hub.core.config import ProviderConfig
from market_hub.core.exceptions import ProviderError
from market_hub.core.models import (
    Candle,
    Capability,
    Interval,
    NewsItem,
    NewsScope,
    ProviderErrorKind,
    Quote,
    SymbolRecord,
)
from market_hub.news.canonical import news_id, unescape_html

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; market-hub/0.1)"
_DEFAULT_TIMEOUT = 30.0

M = TypeVar("M", bound=BaseModel)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Consumer-facing interface for one upstream provider.

    Attributes
    ----------
    provider_id : str
        Stable identifier used in health snapshots and ``providerId`` fields.
    capabilities : frozenset[Capability]
        Operations this adapter can serve. The manager never calls an
        operation outside this set.
    symbols_per_request : int | None
        Quote symbols one upstream request carries. ``None`` means a whole
        ``fetch_quotes`` batch is a single request.
    """

    provider_id: str
    capabilities: frozenset[Capability]
    symbols_per_request: int | None

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        """Fetch quotes for ``symbols``, chunking as needed.

        Missing symbols are omitted, never fabricated.
        """
        ...

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        """Fetch candles ascending by time, truncated to the newest ``limit``."""
        ...

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        """Fetch news for a general, ticker, or topic scope."""
        ...

    async def fetch_symbols(self) -> list[SymbolRecord]:
        """Fetch the provider's listing of tradable US symbols."""
        ...

    async def close(self) -> None: ...


class HttpProvider:
    """Base class for httpx-backed adapters.

    Subclasses set ``provider_id``, ``capabilities``, ``default_base_url``
    and ``key_param``, and override the ``fetch_*`` methods they support.

    Use via ``async with SomeProvider(config) as p:`` or call ``close()``.
    """

    provider_id: str = ""
    capabilities: frozenset[Capability] = frozenset()
    default_base_url: str = ""
    key_param: str | None = "apikey"
    symbols_per_request: int | None = None

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._config = config
        self._api_key = config.api_key
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> HttpProvider:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"

    # --- Unsupported by default ---

    async def fetch_quotes(self, symbols: Sequence[str]) -> list[Quote]:
        raise NotImplementedError(f"{self.provider_id} does not serve quotes")

    async def fetch_ohlc(self, symbol: str, interval: Interval, limit: int) -> list[Candle]:
        raise NotImplementedError(f"{self.provider_id} does not serve OHLC")

    async def fetch_news(self, scope: NewsScope) -> list[NewsItem]:
        raise NotImplementedError(f"{self.provider_id} does not serve news")

    async def fetch_symbols(self) -> list[SymbolRecord]:
        raise NotImplementedError(f"{self.provider_id} does not serve symbols")

    # --- HTTP plumbing ---

    def _error(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        status: int | None = None,
        url: str | None = None,
    ) -> ProviderError:
        return ProviderError(
            f"{self.provider_id}: {message}",
            kind=kind.value,
            status=status,
            context={"provider": self.provider_id, "url": url},
        )

    async def _request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET ``url`` once and translate failures into ProviderError.

        Status mapping:
            401/403 -> auth, 429 -> rate_limit, other non-2xx -> server.
            Timeouts and transport failures -> network.
        """
        params = dict(params or {})
        if self.key_param and self._api_key:
            params[self.key_param] = self._api_key

        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise self._error(ProviderErrorKind.NETWORK, f"timeout on {url}", url=url) from e
        except httpx.TransportError as e:
            raise self._error(
                ProviderErrorKind.NETWORK, f"{type(e).__name__} on {url}", url=url
            ) from e

        status = response.status_code
        if 200 <= status < 300:
            return response
        if status in (401, 403):
            kind = ProviderErrorKind.AUTH
        elif status == 429:
            kind = ProviderErrorKind.RATE_LIMIT
        else:
            kind = ProviderErrorKind.SERVER
        raise self._error(kind, f"HTTP {status} from {url}", status=status, url=url)

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request(url, params)
        try:
            data = response.json()
        except ValueError as e:
            raise self._error(ProviderErrorKind.SCHEMA, f"invalid JSON from {url}", url=url) from e
        self._check_payload(data, url)
        return data

    def _check_payload(self, data: Any, url: str) -> None:
        """Hook for providers that report errors inside a 200 body."""

    # --- Normalization helpers ---

    def _build(self, model: type[M], **fields: Any) -> M | None:
        """Validate one row; schema failures drop the row."""
        try:
            return model(**fields)
        except (ValidationError, TypeError, ValueError) as e:
            logger.debug("%s: dropping invalid %s row: %s", self.provider_id, model.__name__, e)
            return None

    def _partial(self, items: list[M], errors: list[ProviderError], requested: int) -> list[M]:
        """Results of a per-symbol fan-out where some calls failed.

        The first error is raised instead when nothing succeeded or any
        call hit an auth failure.
        """
        if errors:
            auth = [e for e in errors if e.kind == ProviderErrorKind.AUTH]
            if auth or not items:
                raise (auth or errors)[0]
            logger.warning(
                "%s: %d of %d calls failed (%s)",
                self.provider_id, len(errors), requested, errors[0],
            )
        return items

    def _news_item(
        self,
        *,
        title: str | None,
        url: str | None,
        published_at: datetime | None,
        summary: str | None = "",
        source: str | None = "",
        **extra: Any,
    ) -> NewsItem | None:
        """Build a NewsItem, rejecting items without a title, URL, or time."""
        title = unescape_html(title or "")
        url = (url or "").strip()
        if not title or not url or published_at is None:
            return None
        return self._build(
            NewsItem,
            id=news_id(url, title, published_at),
            title=title,
            summary=unescape_html(summary or ""),
            url=url,
            published_at=published_at,
            source=source or self.provider_id,
            provider=self.provider_id,
            **extra,
        )


# --- Module helpers ---


def chunked(items: Sequence[str], size: int) -> Iterator[list[str]]:
    """Yield successive ``size``-length chunks of ``items``."""
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def safe_float(value: Any) -> float | None:
    """Parse a float, tolerating None, blanks, and trailing percent signs."""
    if value is None:
        return None
    try:
        if isinstance(value, str):
            value = value.strip().rstrip("%")
            if not value:
                return None
        return float(value)
    except (TypeError, ValueError):
        return None


def safe_int(value: Any) -> int | None:
    f = safe_float(value)
    return int(f) if f is not None else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(seconds: Any) -> datetime | None:
    ts = safe_float(seconds)
    if ts is None or ts <= 0:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
