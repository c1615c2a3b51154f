"""CoinGecko crypto price API with per-coin Binance fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from aiolimiter import AsyncLimiter
from pydantic import BaseModel, ConfigDict, RootModel

from marketfeed.core.config import CoinGeckoConfig
from marketfeed.core.exceptions import NotFound, UpstreamError
from marketfeed.core.models import (
    HistoryPoint,
    HistoryResult,
    QuoteResult,
    QuoteSource,
    SearchResult,
)
from marketfeed.net.reliable import ReliableHttpClient
from marketfeed.providers.base import now_ms, validate_payload
from marketfeed.providers.binance import BinanceClient

logger = logging.getLogger(__name__)

_SIMPLE_PRICE_PATH = "/simple/price"
_MARKET_CHART_PATH = "/coins/{coin_id}/market_chart"
_SEARCH_PATH = "/search"
_SEARCH_LIMIT = 10


class _SimplePriceEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    usd: float | None = None
    usd_24h_change: float | None = None
    last_updated_at: int | None = None


class _SimplePricePayload(RootModel[dict[str, _SimplePriceEntry]]):
    pass


class _MarketChartPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prices: list[tuple[float, float | None]]


class _SearchCoin(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    symbol: str
    thumb: str | None = None
    large: str | None = None


class _SearchPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    coins: list[_SearchCoin] = []


class CoinGeckoClient:
    """Batched quotes, market-chart history and search against CoinGecko.

    Quote resolution for each coin id:
    1. ``/simple/price`` for the whole chunk (one request per
       ``batch_size`` ids).
    2. Ids the batch left unresolved (non-2xx, malformed body, timeout,
       missing or zero price) fall back concurrently and independently to
       ``BinanceClient.get_quote``.
    3. If the fallback fails as well, the id gets an explicit error.

    Parameters
    ----------
    http : ReliableHttpClient
        Shared reliability wrapper (retries, timeouts, coalescing).
    config : CoinGeckoConfig | None
        Endpoint, batching and rate-limit settings.
    fallback : BinanceClient | None
        Candle-based fallback. Without one, unresolved ids fail directly.
    """

    def __init__(
        self,
        http: ReliableHttpClient,
        config: CoinGeckoConfig | None = None,
        fallback: BinanceClient | None = None,
    ) -> None:
        self._http = http
        self._config = config or CoinGeckoConfig()
        self._fallback = fallback
        self._limiter = AsyncLimiter(max_rate=self._config.rate_limit, time_period=60.0)

    def _request_kwargs(self, timeout: float | None = None) -> dict[str, Any]:
        return {
            "timeout": timeout or self._config.timeout,
            "retries": self._config.retries,
            "limiter": self._limiter,
        }

    # --- Quotes ---

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, QuoteResult]:
        coin_ids = list(dict.fromkeys(symbols))
        if not coin_ids:
            return {}

        size = self._config.batch_size
        chunks = [coin_ids[i : i + size] for i in range(0, len(coin_ids), size)]
        resolved: dict[str, QuoteResult] = {}
        for part in await asyncio.gather(*(self._simple_price(c) for c in chunks)):
            resolved.update(part)

        unresolved = [c for c in coin_ids if c not in resolved]
        if unresolved:
            logger.warning(
                "CoinGecko left %d of %d ids unresolved, trying fallback: %s",
                len(unresolved), len(coin_ids), ", ".join(unresolved),
            )
            fallbacks = await asyncio.gather(*(self._fallback_quote(c) for c in unresolved))
            resolved.update(zip(unresolved, fallbacks))

        return {c: resolved[c] for c in coin_ids}

    async def _simple_price(self, coin_ids: list[str]) -> dict[str, QuoteResult]:
        """One batched call. Returns only the ids it could price."""
        try:
            data = await self._http.fetch_json(
                f"{self._config.base_url}{_SIMPLE_PRICE_PATH}",
                params={
                    "ids": ",".join(coin_ids),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                    "include_last_updated_at": "true",
                },
                **self._request_kwargs(),
            )
            payload = validate_payload(
                _SimplePricePayload, data, provider="coingecko", what="simple price"
            )
        except UpstreamError as e:
            logger.warning("CoinGecko batch of %d failed: %s", len(coin_ids), e)
            return {}

        results: dict[str, QuoteResult] = {}
        for coin_id in coin_ids:
            entry = payload.root.get(coin_id)
            if entry is None or not entry.usd:
                continue
            results[coin_id] = QuoteResult(
                id=coin_id,
                price=entry.usd,
                currency="USD",
                change_pct=entry.usd_24h_change or 0.0,
                timestamp=(
                    entry.last_updated_at * 1000 if entry.last_updated_at else now_ms()
                ),
                source=QuoteSource.COINGECKO,
            )
        return results

    async def _fallback_quote(self, coin_id: str) -> QuoteResult:
        if self._fallback is None:
            return QuoteResult.failure(
                coin_id, f"Coin {coin_id} not found in CoinGecko response"
            )
        try:
            return await self._fallback.get_quote(coin_id)
        except UpstreamError as e:
            logger.error("Binance fallback failed for %s: %s", coin_id, e)
            return QuoteResult.failure(
                coin_id,
                f"CoinGecko and Binance fallback both failed for {coin_id}: {e}",
            )

    # --- History ---

    async def get_history(self, coin_id: str, days: int) -> HistoryResult:
        """USD price series from ``/coins/<id>/market_chart``.

        Requests are coalesced per ``(coin_id, days)``. Null prices are
        dropped.

        Raises:
            HttpError / ParseError / FetchTimeoutError / TransportError:
                see ``ReliableHttpClient.fetch_json``.
            NotFound: The chart holds no prices.
        """
        data = await self._http.fetch_json(
            f"{self._config.base_url}{_MARKET_CHART_PATH.format(coin_id=coin_id)}",
            coalesce_key=f"history:coingecko:{coin_id}:{days}",
            params={"vs_currency": "usd", "days": days},
            **self._request_kwargs(self._config.history_timeout),
        )
        payload = validate_payload(
            _MarketChartPayload, data, provider="coingecko", what="market chart"
        )
        points = [
            HistoryPoint(t=int(ts), v=price)
            for ts, price in payload.prices
            if price is not None
        ]
        if not points:
            raise NotFound(
                f"No CoinGecko history for {coin_id}",
                context={"provider": "coingecko", "symbol": coin_id},
            )
        return HistoryResult(
            id=coin_id, points=points, currency="USD", source=QuoteSource.COINGECKO
        )

    # --- Search ---

    async def search(self, query: str) -> list[SearchResult]:
        """Top coins matching ``query``."""
        data = await self._http.fetch_json(
            f"{self._config.base_url}{_SEARCH_PATH}",
            params={"query": query},
            **self._request_kwargs(),
        )
        payload = validate_payload(_SearchPayload, data, provider="coingecko", what="search")
        return [
            SearchResult(
                id=f"cg:{coin.id}",
                type="crypto",
                provider="coingecko",
                symbol=coin.symbol.upper(),
                name=coin.name,
                currency="USD",
                country="Global",
                extra={"image": coin.thumb or coin.large} if (coin.thumb or coin.large) else None,
            )
            for coin in payload.coins[:_SEARCH_LIMIT]
        ]
