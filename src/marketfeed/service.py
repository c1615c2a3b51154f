"""MarketDataService: wires providers and aggregators around one HTTP client."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from marketfeed.aggregate.currency import CurrencyNormalizer
from marketfeed.aggregate.fx import FxAggregator
from marketfeed.aggregate.history import HistoryAggregator
from marketfeed.aggregate.quotes import QuoteAggregator
from marketfeed.aggregate.search import SearchAggregator
from marketfeed.core.config import MarketFeedConfig
from marketfeed.core.models import (
    FxResult,
    HistoryError,
    HistoryResult,
    InternalId,
    QuoteResult,
    SearchResult,
)
from marketfeed.net.coalesce import RequestCoalescer
from marketfeed.net.reliable import ReliableHttpClient
from marketfeed.providers.binance import BinanceClient
from marketfeed.providers.coingecko import CoinGeckoClient
from marketfeed.providers.exchangerate import ExchangeRateClient
from marketfeed.providers.yahoo import YahooClient

logger = logging.getLogger(__name__)


class MarketDataService:
    """Entry point for quote, history, search and FX lookups.

    Owns the ``httpx.AsyncClient`` and the request coalescer shared by every
    provider, so concurrent identical fetches across requests are made once.

    Use via ``async with MarketDataService(config) as service:``.
    """

    def __init__(
        self,
        config: MarketFeedConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or MarketFeedConfig()
        self.coalescer = RequestCoalescer()
        self.http = ReliableHttpClient(
            config=self.config.http,
            coalescer=self.coalescer,
            client=http_client,
        )

        self.binance = BinanceClient(self.http, self.config.binance)
        self.coingecko = CoinGeckoClient(self.http, self.config.coingecko, fallback=self.binance)
        self.yahoo = YahooClient(self.http, self.config.yahoo)
        self.exchangerate = ExchangeRateClient(self.http, self.config.fx)
        normalizer = CurrencyNormalizer(self.config.normalization)

        self.quotes = QuoteAggregator(self.coingecko, self.yahoo, normalizer)
        self.history = HistoryAggregator(
            self.coingecko, self.yahoo, binance=self.binance, normalizer=normalizer
        )
        self.searcher = SearchAggregator(self.coingecko, self.yahoo)
        self.fx = FxAggregator(self.exchangerate)

    async def __aenter__(self) -> MarketDataService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http.close()

    async def get_quotes(self, ids: Sequence[str | InternalId]) -> list[QuoteResult]:
        results = await self.quotes.get_quotes(ids)
        failed = sum(1 for r in results if not r.ok)
        logger.info("Quotes: %d requested, %d failed", len(results), failed)
        return results

    async def get_history(
        self,
        id: str | InternalId,
        range_: str = "1mo",
        interval: str = "1d",
    ) -> HistoryResult | HistoryError:
        return await self.history.get_history(id, range_, interval)

    async def search(self, query: str) -> list[SearchResult]:
        return await self.searcher.search(query)

    async def get_fx(self, base: str | None = None, quote: str | None = None) -> FxResult:
        return await self.fx.get_rate(base, quote)
