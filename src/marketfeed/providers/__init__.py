"""Upstream provider clients."""

from marketfeed.providers.base import (
    CryptoHistoryProvider,
    QuoteProvider,
    SearchProvider,
)
from marketfeed.providers.binance import BinanceClient
from marketfeed.providers.coingecko import CoinGeckoClient
from marketfeed.providers.exchangerate import ExchangeRateClient
from marketfeed.providers.yahoo import YahooClient

__all__ = [
    "QuoteProvider",
    "SearchProvider",
    "CryptoHistoryProvider",
    "BinanceClient",
    "CoinGeckoClient",
    "ExchangeRateClient",
    "YahooClient",
]
