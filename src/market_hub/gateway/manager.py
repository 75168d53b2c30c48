"""Provider manager: admission, dispatch policy, and health tracking."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from market_hub.core.config import HubConfig
from market_hub.core.exceptions import ProviderError, ProviderUnavailable
from market_hub.core.models import (
    Candle,
    Capability,
    ErrorInfo,
    Interval,
    NewsItem,
    NewsScope,
    ProviderErrorKind,
    ProviderHealth,
    Quote,
    SymbolRecord,
    normalize_series,
)
from market_hub.gateway.breaker import CircuitBreaker
from market_hub.gateway.limiter import TokenBucket
from market_hub.news.canonical import dedupe
from market_hub.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

# Adapter bugs surfacing while parsing an unexpected payload
_PARSE_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


@dataclass
class _ProviderSlot:
    """Everything the manager owns for one provider."""

    adapter: ProviderAdapter
    priority: int
    limiter: TokenBucket
    breaker: CircuitBreaker
    max_symbols: int | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    attempts: int = 0
    successes: int = 0
    errors: int = 0

    @property
    def provider_id(self) -> str:
        return self.adapter.provider_id


class ProviderManager:
    """Owns adapters, token buckets and circuit breakers.

    Dispatch policies:

    - quotes / OHLC: sequential, in priority order; the first provider
      with a non-empty result wins. For quotes, symbols the winner did
      not return are asked of the next provider.
      Quote batches are cut to the provider's ``max_symbols_per_call``
      and cost one token per upstream request.
    - news / symbols: concurrent fan-out to every admitted provider;
      partial failure is reported, never fatal.

    A provider is admitted when its breaker allows a call and its bucket
    has a token. Breaker and bucket state is only touched under that
    provider's lock. Every upstream call runs under a per-category
    deadline; expiry is recorded as a network failure.

    Operations never raise for provider failures. They return whatever
    data was obtained and a list of ``ErrorInfo`` diagnostics.
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        config: HubConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or HubConfig()
        self._timeouts = self._config.timeouts
        rng = rng or random.Random()

        slots = []
        for index, adapter in enumerate(adapters):
            pcfg = getattr(self._config.providers, adapter.provider_id, None)
            slots.append(
                _ProviderSlot(
                    adapter=adapter,
                    priority=pcfg.priority if pcfg is not None else 1000 + index,
                    limiter=TokenBucket(
                        capacity=pcfg.capacity if pcfg is not None else 60,
                        refill_per_minute=pcfg.refill_per_minute if pcfg is not None else 60.0,
                    ),
                    breaker=CircuitBreaker(
                        adapter.provider_id, self._config.breaker, clock=clock, rng=rng
                    ),
                    max_symbols=pcfg.max_symbols_per_call if pcfg is not None else None,
                )
            )
        # Stable sort keeps insertion order among equal priorities
        self._slots: list[_ProviderSlot] = sorted(slots, key=lambda s: s.priority)
        self._last_seen: dict[tuple[str, str], datetime] = {}
        self.symbol_filter: Callable[[str], bool] | None = None

    @property
    def provider_ids(self) -> list[str]:
        return [s.provider_id for s in self._slots]

    def breaker(self, provider_id: str) -> CircuitBreaker:
        return self._slot(provider_id).breaker

    def limiter(self, provider_id: str) -> TokenBucket:
        return self._slot(provider_id).limiter

    def _slot(self, provider_id: str) -> _ProviderSlot:
        for slot in self._slots:
            if slot.provider_id == provider_id:
                return slot
        raise KeyError(provider_id)

    def _slots_for(self, capability: Capability) -> list[_ProviderSlot]:
        return [s for s in self._slots if capability in s.adapter.capabilities]

    async def close(self) -> None:
        for slot in self._slots:
            await slot.adapter.close()

    # --- Admission & invocation ---

    async def _admit(self, slot: _ProviderSlot, tokens: int = 1) -> None:
        """Reserve breaker admission and ``tokens`` tokens, or raise ProviderUnavailable."""
        async with slot.lock:
            breaker = slot.breaker
            if not breaker.can_attempt():
                until = breaker.backoff_until_datetime()
                state = "disabled" if breaker.disabled else "circuit open"
                when = until.isoformat() if until else "unknown"
                raise ProviderUnavailable(
                    f"{slot.provider_id}: {state} until {when}",
                    kind=ProviderErrorKind.UNAVAILABLE.value,
                    context={
                        "provider": slot.provider_id,
                        "backoff_until": until.isoformat() if until else None,
                    },
                )
            if not slot.limiter.has_token(tokens):
                raise ProviderUnavailable(
                    f"{slot.provider_id}: local rate limit, {tokens} token(s) not available",
                    kind=ProviderErrorKind.RATE_LIMIT.value,
                    context={"provider": slot.provider_id, "backoff_until": None},
                )
            breaker.allow()
            await slot.limiter.try_acquire(tokens)
            slot.attempts += 1

    async def _invoke(
        self,
        slot: _ProviderSlot,
        timeout: float,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one admitted upstream call and feed the outcome to the breaker."""
        try:
            result = await asyncio.wait_for(call(*args), timeout)
        except asyncio.TimeoutError as e:
            error = ProviderError(
                f"{slot.provider_id}: deadline of {timeout:g}s exceeded",
                kind=ProviderErrorKind.NETWORK.value,
                context={"provider": slot.provider_id},
            )
            await self._record_failure(slot, error)
            raise error from e
        except ProviderError as e:
            await self._record_failure(slot, e)
            raise
        except _PARSE_ERRORS as e:
            error = ProviderError(
                f"{slot.provider_id}: unexpected payload ({type(e).__name__}: {e})",
                kind=ProviderErrorKind.SCHEMA.value,
                context={"provider": slot.provider_id},
            )
            await self._record_failure(slot, error)
            raise error from e
        except asyncio.CancelledError:
            async with slot.lock:
                slot.breaker.release_trial()
            raise

        async with slot.lock:
            slot.breaker.record_success()
            slot.successes += 1
        return result

    async def _record_failure(self, slot: _ProviderSlot, error: ProviderError) -> None:
        logger.warning("Provider %s failed (%s): %s", slot.provider_id, error.kind, error)
        async with slot.lock:
            slot.errors += 1
            kind = ProviderErrorKind(error.kind)
            # The breaker treats schema garbage like a server failure
            if kind == ProviderErrorKind.SCHEMA:
                kind = ProviderErrorKind.SERVER
            slot.breaker.record_failure(kind, str(error))

    @staticmethod
    def _error_info(slot: _ProviderSlot, error: ProviderError) -> ErrorInfo:
        return ErrorInfo(
            provider=slot.provider_id,
            kind=ProviderErrorKind(error.kind),
            message=str(error),
            status=error.status,
        )

    @staticmethod
    def _no_provider(capability: Capability) -> ErrorInfo:
        return ErrorInfo(
            kind=ProviderErrorKind.UNAVAILABLE,
            message=f"no provider configured for {capability.value}",
        )

    # --- Quotes ---

    def _accepts(self, symbol: str) -> bool:
        return self.symbol_filter is None or self.symbol_filter(symbol)

    def _stamp(self, quote: Quote) -> Quote:
        """Keep updated_at monotonic per (provider, symbol)."""
        key = (quote.provider_id, quote.symbol)
        last = self._last_seen.get(key)
        if last is not None and quote.updated_at < last:
            return quote.model_copy(update={"updated_at": last})
        self._last_seen[key] = quote.updated_at
        return quote

    def _quote_chunks(self, slot: _ProviderSlot, symbols: list[str]) -> list[list[str]]:
        """Split ``symbols`` into the batches one admission may cover.

        A batch holds at most the provider's ``max_symbols_per_call``, and
        never needs more upstream requests than the bucket can ever hold.
        """
        size = min(len(symbols), slot.max_symbols or len(symbols))
        per_request = slot.adapter.symbols_per_request
        if per_request:
            size = min(size, slot.limiter.capacity * per_request)
        size = max(size, 1)
        return [symbols[i : i + size] for i in range(0, len(symbols), size)]

    @staticmethod
    def _requests_for(slot: _ProviderSlot, count: int) -> int:
        """Upstream requests, hence tokens, a quote batch of ``count`` costs."""
        per_request = slot.adapter.symbols_per_request
        return -(-count // per_request) if per_request else 1

    async def get_quotes(self, symbols: Sequence[str]) -> tuple[list[Quote], list[ErrorInfo]]:
        """Quotes for ``symbols`` with ordered fallback. Missing symbols are omitted.

        Each provider is asked in batches; every upstream request costs one
        token. A provider that fails or runs dry hands its remaining
        symbols to the next one.
        """
        wanted: list[str] = []
        for s in symbols:
            s = s.strip().upper()
            if s and s not in wanted and self._accepts(s):
                wanted.append(s)
        if not wanted:
            return [], []

        slots = self._slots_for(Capability.QUOTES)
        if not slots:
            return [], [self._no_provider(Capability.QUOTES)]

        found: dict[str, Quote] = {}
        errors: list[ErrorInfo] = []
        for slot in slots:
            remaining = [s for s in wanted if s not in found]
            if not remaining:
                break
            for chunk in self._quote_chunks(slot, remaining):
                try:
                    await self._admit(slot, self._requests_for(slot, len(chunk)))
                    quotes = await self._invoke(
                        slot, self._timeouts.quotes, slot.adapter.fetch_quotes, chunk
                    )
                except ProviderError as e:
                    errors.append(self._error_info(slot, e))
                    break
                for quote in quotes:
                    if quote.symbol in chunk and quote.symbol not in found:
                        found[quote.symbol] = self._stamp(quote)

        return [found[s] for s in wanted if s in found], errors

    # --- OHLC ---

    async def get_ohlc(
        self, symbol: str, interval: Interval, limit: int
    ) -> tuple[list[Candle], list[ErrorInfo]]:
        """Candles from the first provider with a non-empty series."""
        symbol = symbol.strip().upper()
        slots = self._slots_for(Capability.OHLC)
        if not slots:
            return [], [self._no_provider(Capability.OHLC)]

        errors: list[ErrorInfo] = []
        for slot in slots:
            try:
                await self._admit(slot)
                candles = await self._invoke(
                    slot, self._timeouts.ohlc, slot.adapter.fetch_ohlc, symbol, interval, limit
                )
            except ProviderError as e:
                errors.append(self._error_info(slot, e))
                continue
            if candles:
                return normalize_series(candles, limit), errors
        return [], errors

    # --- Fan-out (news, symbols) ---

    async def _fan_out(
        self,
        capability: Capability,
        timeout: float,
        method: str,
        *args: Any,
    ) -> tuple[list[tuple[str, list]], list[ErrorInfo]]:
        slots = self._slots_for(capability)
        if not slots:
            return [], [self._no_provider(capability)]

        errors: list[ErrorInfo] = []
        admitted: list[_ProviderSlot] = []
        for slot in slots:
            try:
                await self._admit(slot)
            except ProviderUnavailable as e:
                errors.append(self._error_info(slot, e))
            else:
                admitted.append(slot)

        results = await asyncio.gather(
            *(self._invoke(s, timeout, getattr(s.adapter, method), *args) for s in admitted),
            return_exceptions=True,
        )
        batches: list[tuple[str, list]] = []
        for slot, result in zip(admitted, results):
            if isinstance(result, ProviderError):
                errors.append(self._error_info(slot, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                batches.append((slot.provider_id, list(result)))
        return batches, errors

    async def get_news(
        self, scope: NewsScope
    ) -> tuple[list[NewsItem], dict[str, int], list[ErrorInfo]]:
        """Merged, deduplicated news from every admitted news provider."""
        batches, errors = await self._fan_out(
            Capability.NEWS, self._timeouts.news, "fetch_news", scope
        )
        counts = {provider: len(items) for provider, items in batches}
        merged = dedupe(item for _, items in batches for item in items)
        return merged, counts, errors

    async def get_symbols(self) -> tuple[list[tuple[str, list[SymbolRecord]]], list[ErrorInfo]]:
        """Per-provider symbol listings, in priority order."""
        return await self._fan_out(Capability.SYMBOLS, self._timeouts.symbols, "fetch_symbols")

    # --- Health ---

    def health(self) -> dict[str, ProviderHealth]:
        """Read-only snapshot of every provider's state."""
        snapshot: dict[str, ProviderHealth] = {}
        for slot in self._slots:
            breaker = slot.breaker
            last_success = (
                datetime.fromtimestamp(breaker.last_success, tz=timezone.utc)
                if breaker.last_success is not None
                else None
            )
            snapshot[slot.provider_id] = ProviderHealth(
                provider=slot.provider_id,
                state=breaker.health_state(),
                consecutive_failures=breaker.consecutive_failures,
                last_error=breaker.last_error,
                backoff_until=breaker.backoff_until_datetime(),
                tokens=round(slot.limiter.tokens, 3),
                tokens_refilled_at=slot.limiter.refilled_at,
                last_success=last_success,
                attempts=slot.attempts,
                successes=slot.successes,
                errors=slot.errors,
            )
        return snapshot
