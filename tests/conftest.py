"""Shared pytest fixtures for marketfeed."""

from __future__ import annotations

import pytest

from marketfeed.core.config import (
    BinanceConfig,
    CacheConfig,
    CoinGeckoConfig,
    FxConfig,
    HttpConfig,
    MarketFeedConfig,
    YahooConfig,
)
from marketfeed.net.reliable import ReliableHttpClient


@pytest.fixture
def config(tmp_path) -> MarketFeedConfig:
    """Config with no retry delays and no effective rate limits."""
    return MarketFeedConfig(
        http=HttpConfig(retry_delay=0.0),
        coingecko=CoinGeckoConfig(retries=0, rate_limit=1000),
        yahoo=YahooConfig(retries=0, rate_limit=1000),
        binance=BinanceConfig(retries=0),
        fx=FxConfig(retries=0),
        cache=CacheConfig(sqlite_path=str(tmp_path / "cache.db")),
    )


@pytest.fixture
async def http(config: MarketFeedConfig) -> ReliableHttpClient:
    async with ReliableHttpClient(config.http) as client:
        yield client
