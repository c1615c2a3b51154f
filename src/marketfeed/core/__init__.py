"""marketfeed.core: foundation types, config, and exceptions."""

from marketfeed.core.config import (
    APIConfig,
    BinanceConfig,
    CacheConfig,
    CoinGeckoConfig,
    FxConfig,
    HttpConfig,
    MarketFeedConfig,
    NormalizationConfig,
    YahooConfig,
    load_config,
)
from marketfeed.core.exceptions import (
    ConfigError,
    FetchTimeoutError,
    HttpError,
    MarketFeedError,
    NotFound,
    ParseError,
    ProviderUnavailable,
    TransportError,
    UpstreamError,
    ValidationError,
)
from marketfeed.core.models import (
    AssetRecord,
    FxResult,
    HistoryError,
    HistoryPoint,
    HistoryResult,
    IdKind,
    InternalId,
    Provider,
    QuoteResult,
    QuoteSource,
    SearchResult,
)

__all__ = [
    # Enums
    "IdKind",
    "Provider",
    "QuoteSource",
    # Models
    "InternalId",
    "AssetRecord",
    "QuoteResult",
    "HistoryPoint",
    "HistoryResult",
    "HistoryError",
    "FxResult",
    "SearchResult",
    # Config
    "MarketFeedConfig",
    "HttpConfig",
    "CoinGeckoConfig",
    "YahooConfig",
    "BinanceConfig",
    "FxConfig",
    "NormalizationConfig",
    "CacheConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "MarketFeedError",
    "ConfigError",
    "ValidationError",
    "UpstreamError",
    "HttpError",
    "ParseError",
    "FetchTimeoutError",
    "TransportError",
    "ProviderUnavailable",
    "NotFound",
]
