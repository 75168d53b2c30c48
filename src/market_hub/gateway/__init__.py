"""Request path between the API and the providers: limiter, breaker, manager, cache, bus."""

from market_hub.gateway.breaker import CircuitBreaker
from market_hub.gateway.bus import BusResult, NewsBatch, RequestBus
from market_hub.gateway.cache import TTLStore
from market_hub.gateway.limiter import TokenBucket
from market_hub.gateway.manager import ProviderManager

__all__ = [
    "BusResult",
    "CircuitBreaker",
    "NewsBatch",
    "ProviderManager",
    "RequestBus",
    "TTLStore",
    "TokenBucket",
]
