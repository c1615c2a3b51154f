"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from marketfeed.core.exceptions import ConfigError

_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class HttpConfig(BaseModel):
    """Defaults for the reliability wrapper (seconds)."""

    model_config = ConfigDict(frozen=True)

    timeout: float = 10.0
    retries: int = 3
    retry_delay: float = 1.0
    user_agent: str = _BROWSER_USER_AGENT

    @field_validator("timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be > 0")
        return v

    @field_validator("retries")
    @classmethod
    def retries_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retries must be >= 0")
        return v

    @field_validator("retry_delay")
    @classmethod
    def retry_delay_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("retry_delay must be >= 0")
        return v


class CoinGeckoConfig(BaseModel):
    """CoinGecko crypto price API."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.coingecko.com/api/v3"
    batch_size: int = 250
    timeout: float = 8.0
    history_timeout: float = 10.0
    retries: int = 2
    # Requests per minute (free tier).
    rate_limit: int = 30

    @field_validator("batch_size")
    @classmethod
    def batch_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_size must be >= 1")
        return v


class YahooConfig(BaseModel):
    """Yahoo Finance quote and chart APIs."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://query1.finance.yahoo.com"
    batch_size: int = 50
    timeout: float = 8.0
    history_timeout: float = 10.0
    retries: int = 2
    use_quote_endpoint: bool = True
    # Requests per second.
    rate_limit: int = 10

    @field_validator("batch_size")
    @classmethod
    def batch_size_within_limit(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("batch_size must be between 1 and 50")
        return v


class BinanceConfig(BaseModel):
    """Binance public market data (crypto fallback)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.binance.com"
    timeout: float = 10.0
    retries: int = 2
    max_candles: int = 1000

    @field_validator("max_candles")
    @classmethod
    def max_candles_within_limit(cls, v: int) -> int:
        if v < 1 or v > 1000:
            raise ValueError("max_candles must be between 1 and 1000")
        return v


class FxConfig(BaseModel):
    """ExchangeRate-API (USD base only)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.exchangerate-api.com/v4"
    timeout: float = 5.0
    retries: int = 2


class NormalizationConfig(BaseModel):
    """Currency-unit normalization for local-exchange instruments."""

    model_config = ConfigDict(frozen=True)

    minor_unit_threshold: float = 500.0


class CacheConfig(BaseModel):
    """Persistent client-side cache used by CachedMarketClient."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/marketfeed-cache.db"
    base_url: str = "http://localhost:8000/api"
    search_ttl: int = 24 * 60 * 60
    quote_ttl: int = 5 * 60
    history_ttl: int = 60 * 60
    fx_ttl: int = 60 * 60
    default_ttl: int = 60 * 60


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]


class MarketFeedConfig(BaseModel):
    """Root configuration for the entire marketfeed system."""

    model_config = ConfigDict(frozen=True)

    http: HttpConfig = HttpConfig()
    coingecko: CoinGeckoConfig = CoinGeckoConfig()
    yahoo: YahooConfig = YahooConfig()
    binance: BinanceConfig = BinanceConfig()
    fx: FxConfig = FxConfig()
    normalization: NormalizationConfig = NormalizationConfig()
    cache: CacheConfig = CacheConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "MARKETFEED_",
) -> MarketFeedConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (MARKETFEED_HTTP__TIMEOUT, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        MARKETFEED_YAHOO__BATCH_SIZE=20  ->  yahoo.batch_size = 20
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return MarketFeedConfig.model_validate(merged)
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

    env_path = os.environ.get("MARKETFEED_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from MARKETFEED_CONFIG not found: {env_path}",
                context={"field": "MARKETFEED_CONFIG", "value": env_path},
            )
        return p

    default = Path("marketfeed.yml")
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
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # MARKETFEED_CONFIG points at the file itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            existing = target.get(part)
            target[part] = dict(existing) if isinstance(existing, dict) else {}
            target = target[part]
        target[parts[-1]] = cast_value

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
