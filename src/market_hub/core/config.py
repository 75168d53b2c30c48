"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from market_hub.core.exceptions import ConfigError

# Environment variables holding upstream API keys. Presence toggles activation.
PROVIDER_KEY_ENV: dict[str, str] = {
    "fmp": "FMP_KEY",
    "finnhub": "FINNHUB_KEY",
    "alphavantage": "ALPHAVANTAGE_KEY",
}

DEFAULT_MAJOR_ETFS: dict[str, str] = {
    "SPY": "SPDR S&P 500 ETF Trust",
    "QQQ": "Invesco QQQ Trust",
    "IWM": "iShares Russell 2000 ETF",
    "DIA": "SPDR Dow Jones Industrial Average ETF Trust",
    "VTI": "Vanguard Total Stock Market ETF",
    "VEA": "Vanguard FTSE Developed Markets ETF",
    "VWO": "Vanguard FTSE Emerging Markets ETF",
    "BND": "Vanguard Total Bond Market ETF",
    "TLT": "iShares 20+ Year Treasury Bond ETF",
    "GLD": "SPDR Gold Shares",
    "SLV": "iShares Silver Trust",
    "USO": "United States Oil Fund",
    "XLF": "Financial Select Sector SPDR Fund",
    "XLK": "Technology Select Sector SPDR Fund",
    "XLE": "Energy Select Sector SPDR Fund",
    "XLV": "Health Care Select Sector SPDR Fund",
    "XLI": "Industrial Select Sector SPDR Fund",
    "XLY": "Consumer Discretionary Select Sector SPDR Fund",
    "XLP": "Consumer Staples Select Sector SPDR Fund",
    "XLU": "Utilities Select Sector SPDR Fund",
    "XLB": "Materials Select Sector SPDR Fund",
    "XLRE": "Real Estate Select Sector SPDR Fund",
    "XLC": "Communication Services Select Sector SPDR Fund",
}

DEFAULT_SEED_SYMBOLS: tuple[str, ...] = (
    "AAPL", "NVDA", "TSLA", "MSFT", "GOOGL", "AMZN", "META", "NFLX", "AMD", "INTC",
    "SPY", "QQQ", "IWM", "VTI", "ARKK", "TQQQ", "SOXL", "TMF", "UPRO", "TNA",
)


class ProviderConfig(BaseModel):
    """Per-provider access and rate configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    api_key: str | None = None
    priority: int = 100
    capacity: int = 60
    refill_per_minute: float = 60.0
    max_symbols_per_call: int = 100
    base_url: str | None = None

    @field_validator("capacity")
    @classmethod
    def capacity_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("capacity must be >= 1")
        return v

    @field_validator("max_symbols_per_call")
    @classmethod
    def max_symbols_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_symbols_per_call must be >= 1")
        return v

    @field_validator("refill_per_minute")
    @classmethod
    def refill_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("refill_per_minute must be > 0")
        return v


_PROVIDER_DEFAULTS: dict[str, dict] = {
    "fmp": {"priority": 10, "capacity": 60, "refill_per_minute": 60},
    "finnhub": {
        "priority": 20, "capacity": 30, "refill_per_minute": 60, "max_symbols_per_call": 10,
    },
    "alphavantage": {
        "priority": 30, "capacity": 5, "refill_per_minute": 5, "max_symbols_per_call": 2,
    },
    "yahoo_rss": {"priority": 40, "capacity": 30, "refill_per_minute": 30},
}


class ProvidersConfig(BaseModel):
    """All upstream providers. Lower priority number is tried first."""

    model_config = ConfigDict(frozen=True)

    fmp: ProviderConfig = ProviderConfig(**_PROVIDER_DEFAULTS["fmp"])
    finnhub: ProviderConfig = ProviderConfig(**_PROVIDER_DEFAULTS["finnhub"])
    alphavantage: ProviderConfig = ProviderConfig(**_PROVIDER_DEFAULTS["alphavantage"])
    yahoo_rss: ProviderConfig = ProviderConfig(**_PROVIDER_DEFAULTS["yahoo_rss"])

    @model_validator(mode="before")
    @classmethod
    def apply_provider_defaults(cls, data):
        """Partial provider sections keep that provider's own defaults."""
        if not isinstance(data, dict):
            return data
        result = dict(data)
        for name, defaults in _PROVIDER_DEFAULTS.items():
            section = result.get(name)
            if isinstance(section, dict):
                result[name] = {**defaults, **section}
        return result

    def items(self) -> list[tuple[str, ProviderConfig]]:
        """(provider_id, config) pairs, sorted by priority."""
        pairs = [(name, getattr(self, name)) for name in type(self).model_fields]
        return sorted(pairs, key=lambda p: p[1].priority)


class BreakerConfig(BaseModel):
    """Circuit breaker backoff parameters."""

    model_config = ConfigDict(frozen=True)

    base_seconds: float = 1.0
    cap_seconds: float = 300.0
    auth_backoff_seconds: float = 3600.0
    jitter: float = 0.1

    @field_validator("auth_backoff_seconds")
    @classmethod
    def auth_backoff_at_least_an_hour(cls, v: float) -> float:
        if v < 3600:
            raise ValueError("auth_backoff_seconds must be >= 3600")
        return v

    @field_validator("jitter")
    @classmethod
    def jitter_bounded(cls, v: float) -> float:
        if v < 0 or v > 0.1:
            raise ValueError("jitter must be between 0 and 0.1")
        return v

    @model_validator(mode="after")
    def cap_above_base(self) -> BreakerConfig:
        if self.cap_seconds < self.base_seconds:
            raise ValueError("cap_seconds must be >= base_seconds")
        return self


class TimeoutsConfig(BaseModel):
    """Per-category upstream deadlines, in seconds."""

    model_config = ConfigDict(frozen=True)

    quotes: float = 5.0
    news: float = 4.0
    ohlc: float = 10.0
    symbols: float = 30.0


class CacheConfig(BaseModel):
    """TTL (seconds) and maximum entries per cache category."""

    model_config = ConfigDict(frozen=True)

    quote_ttl: float = 30.0
    ohlc_ttl: float = 60.0
    news_ttl: float = 120.0
    symbols_ttl: float = 86400.0
    health_ttl: float = 10.0
    quote_maxsize: int = 5000
    ohlc_maxsize: int = 1000
    news_maxsize: int = 200
    symbols_maxsize: int = 2
    health_maxsize: int = 1
    stale_ttl: float = 3600.0
    cleanup_interval: float = 300.0

    @model_validator(mode="after")
    def ttls_within_bounds(self) -> CacheConfig:
        limits = {"quote_ttl": 30, "ohlc_ttl": 60, "news_ttl": 120, "health_ttl": 10}
        for name, ceiling in limits.items():
            value = getattr(self, name)
            if value <= 0 or value > ceiling:
                raise ValueError(f"{name} must be in (0, {ceiling}]")
        return self


class BusConfig(BaseModel):
    """Quote batching window."""

    model_config = ConfigDict(frozen=True)

    window_ms: int = 100
    max_batch: int = 50

    @field_validator("max_batch")
    @classmethod
    def max_batch_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_batch must be >= 1")
        return v


class UniverseConfig(BaseModel):
    """Symbol universe refresh settings."""

    model_config = ConfigDict(frozen=True)

    refresh_hours: float = 24.0
    major_etfs: dict[str, str] = DEFAULT_MAJOR_ETFS


class ScannerConfig(BaseModel):
    """Scanner universe and preset thresholds."""

    model_config = ConfigDict(frozen=True)

    seed_symbols: tuple[str, ...] = DEFAULT_SEED_SYMBOLS
    include_news_symbols: bool = True
    momentum_change_pct: float = 2.0
    momentum_rvol: float = 1.2
    volume_rvol: float = 2.0
    oversold_change_pct: float = -2.0
    breakout_change_pct: float = 5.0
    breakout_rvol: float = 2.0
    gap_pct: float = 3.0
    batch_size: int = 50
    news_limit: int = 100
    news_window_hours: float = 24.0


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]
    resolve_timeout: float = 6.0


class HubConfig(BaseModel):
    """Root configuration for the entire market-hub system."""

    model_config = ConfigDict(frozen=True)

    providers: ProvidersConfig = ProvidersConfig()
    breaker: BreakerConfig = BreakerConfig()
    timeouts: TimeoutsConfig = TimeoutsConfig()
    cache: CacheConfig = CacheConfig()
    bus: BusConfig = BusConfig()
    universe: UniverseConfig = UniverseConfig()
    scanner: ScannerConfig = ScannerConfig()
    api: APIConfig = APIConfig()

    def active_providers(self) -> list[tuple[str, ProviderConfig]]:
        """Providers that are enabled and, where a key is needed, have one."""
        active = []
        for name, cfg in self.providers.items():
            if not cfg.enabled:
                continue
            if name in PROVIDER_KEY_ENV and not cfg.api_key:
                continue
            active.append((name, cfg))
        return active


def load_config(
    config_path: str | None = None,
    env_prefix: str = "MARKET_HUB_",
) -> HubConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (MARKET_HUB_BUS__WINDOW_MS, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        MARKET_HUB_PROVIDERS__FMP__CAPACITY=120  ->  providers.fmp.capacity = 120

    Upstream keys are additionally read from FMP_KEY, FINNHUB_KEY and
    ALPHAVANTAGE_KEY when not set explicitly.
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        merged = _merge_provider_keys(merged)
        return HubConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("MARKET_HUB_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from MARKET_HUB_CONFIG not found: {env_path}",
                context={"field": "MARKET_HUB_CONFIG", "value": env_path},
            )
        return p

    default = Path("market-hub.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            child = target.get(part)
            child = dict(child) if isinstance(child, dict) else {}
            target[part] = child
            target = child
        target[parts[-1]] = cast_value

    return result


def _merge_provider_keys(base: dict) -> dict:
    """Fill providers.<name>.api_key from the per-provider key variables."""
    result = dict(base)
    providers = dict(result.get("providers") or {})
    for name, env_var in PROVIDER_KEY_ENV.items():
        key = os.environ.get(env_var)
        if not key:
            continue
        section = dict(providers.get(name) or {})
        section.setdefault("api_key", key)
        providers[name] = section
    if providers:
        result["providers"] = providers
    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
