"""market_hub.core - Foundation types, config, and exceptions."""

from market_hub.core.config import (
    APIConfig,
    BreakerConfig,
    BusConfig,
    CacheConfig,
    HubConfig,
    ProviderConfig,
    ProvidersConfig,
    ScannerConfig,
    TimeoutsConfig,
    UniverseConfig,
    load_config,
)
from market_hub.core.exceptions import (
    ClientRequestError,
    ConfigError,
    MarketHubError,
    ProviderError,
    ProviderUnavailable,
    UniverseLoadError,
)
from market_hub.core.models import (
    AssetType,
    BreakerState,
    CacheCategory,
    Candle,
    Capability,
    DateRange,
    ErrorInfo,
    HealthState,
    Interval,
    MatchReason,
    NewsItem,
    NewsScope,
    ProviderErrorKind,
    ProviderHealth,
    ProviderId,
    Quote,
    Resolution,
    ScanHit,
    ScanResult,
    ScannerPreset,
    ScopeKind,
    Sentiment,
    SymbolRecord,
    Ticker,
    normalize_series,
)

__all__ = [
    # Type aliases
    "Ticker",
    "ProviderId",
    # Enums
    "Interval",
    "Sentiment",
    "ProviderErrorKind",
    "Capability",
    "BreakerState",
    "HealthState",
    "ScopeKind",
    "AssetType",
    "CacheCategory",
    "DateRange",
    "MatchReason",
    "ScannerPreset",
    # Market data models
    "Quote",
    "Candle",
    "normalize_series",
    "NewsItem",
    "NewsScope",
    # Symbol models
    "SymbolRecord",
    "Resolution",
    # Scanner models
    "ScanHit",
    "ScanResult",
    # Health & diagnostics
    "ProviderHealth",
    "ErrorInfo",
    # Config
    "HubConfig",
    "ProvidersConfig",
    "ProviderConfig",
    "BreakerConfig",
    "TimeoutsConfig",
    "CacheConfig",
    "BusConfig",
    "UniverseConfig",
    "ScannerConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "MarketHubError",
    "ConfigError",
    "ClientRequestError",
    "ProviderError",
    "ProviderUnavailable",
    "UniverseLoadError",
]
