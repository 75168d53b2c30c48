"""Per-provider circuit breaker with exponential, jittered backoff."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Callable

from market_hub.core.config import BreakerConfig
from market_hub.core.models import BreakerState, HealthState, ProviderErrorKind

logger = logging.getLogger(__name__)

# Keeps base * 2**n inside float range
_MAX_EXPONENT = 32


class CircuitBreaker:
    """Closed / open / half-open state machine for one provider.

    closed:
        Calls pass. Any failure opens the breaker. ``rate_limit``,
        ``server``, ``network`` and ``schema`` failures back off for
        ``min(cap, base * 2**failures)`` seconds with +/- jitter; ``auth``
        backs off for ``auth_backoff_seconds`` and marks the provider
        disabled.
    open:
        Calls are refused until ``backoff_until``; the first call after
        that becomes the half-open trial call.
    half_open:
        Exactly one trial call is in flight. Success closes the breaker and
        resets failures; failure re-opens it with a longer backoff.

    The clock returns epoch seconds and is injectable for tests, as is
    the random source used for jitter.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.name = name
        self._config = config or BreakerConfig()
        self._clock = clock
        self._rng = rng or random.Random()

        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self.last_error_kind: ProviderErrorKind | None = None
        self.last_success: float | None = None
        self.backoff_until: float | None = None
        self._trial_in_flight = False

    @property
    def disabled(self) -> bool:
        return self.state != BreakerState.CLOSED and self.last_error_kind == ProviderErrorKind.AUTH

    def can_attempt(self) -> bool:
        """Whether ``allow()`` would let a call through, without side effects."""
        if self.state == BreakerState.CLOSED:
            return True
        if self.state == BreakerState.OPEN:
            return self.backoff_until is not None and self._clock() >= self.backoff_until
        return not self._trial_in_flight

    def allow(self) -> bool:
        """Admit a call, moving open -> half-open once the backoff elapses."""
        if self.state == BreakerState.CLOSED:
            return True
        if self.state == BreakerState.OPEN:
            if self.backoff_until is None or self._clock() < self.backoff_until:
                return False
            self.state = BreakerState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("Breaker %s half-open, sending a trial call", self.name)
            return True
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def release_trial(self) -> None:
        """Give back a half-open trial call whose call was cancelled before finishing."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        if self.state != BreakerState.CLOSED:
            logger.info("Breaker %s closed after successful trial call", self.name)
        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.backoff_until = None
        self.last_error_kind = None
        self._trial_in_flight = False
        self.last_success = self._clock()

    def record_failure(self, kind: ProviderErrorKind | str, message: str = "") -> float:
        """Open the breaker after a failed call. Returns the backoff in seconds."""
        kind = ProviderErrorKind(kind)
        self.consecutive_failures += 1
        self.last_error = f"{kind.value}: {message}" if message else kind.value
        self.last_error_kind = kind
        self._trial_in_flight = False

        if kind == ProviderErrorKind.AUTH:
            delay = max(self._config.auth_backoff_seconds, 3600.0)
        else:
            exponent = min(self.consecutive_failures, _MAX_EXPONENT)
            raw = min(self._config.cap_seconds, self._config.base_seconds * 2**exponent)
            jitter = self._config.jitter
            delay = raw * (1 + self._rng.uniform(-jitter, jitter))

        self.state = BreakerState.OPEN
        self.backoff_until = self._clock() + delay
        logger.warning(
            "Breaker %s open for %.1fs after %s (failures=%d)",
            self.name, delay, kind.value, self.consecutive_failures,
        )
        return delay

    def health_state(self) -> HealthState:
        if self.state == BreakerState.CLOSED:
            return HealthState.HEALTHY
        if self.disabled:
            return HealthState.DISABLED
        if self.state == BreakerState.HALF_OPEN:
            return HealthState.BACKOFF
        return HealthState.OPEN

    def backoff_until_datetime(self) -> datetime | None:
        if self.backoff_until is None:
            return None
        return datetime.fromtimestamp(self.backoff_until, tz=timezone.utc)
