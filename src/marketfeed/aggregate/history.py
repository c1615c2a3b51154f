"""History aggregation with provider fallback and unit normalization."""

from __future__ import annotations

import logging

from marketfeed.aggregate.currency import CurrencyNormalizer
from marketfeed.core.exceptions import (
    FetchTimeoutError,
    NotFound,
    ProviderUnavailable,
    UpstreamError,
)
from marketfeed.core.models import (
    HistoryError,
    HistoryResult,
    InternalId,
    Provider,
)
from marketfeed.identity.resolver import resolve, route
from marketfeed.providers.base import CryptoHistoryProvider
from marketfeed.providers.yahoo import YahooClient

logger = logging.getLogger(__name__)

DEFAULT_RANGE = "1mo"
DEFAULT_DAYS = 30
NOT_FOUND_MESSAGE = "History data not found"

# Range token -> CoinGecko day count
COINGECKO_DAYS: dict[str, int] = {
    "1d": 7,
    "5d": 7,
    "1mo": 30,
    "3mo": 90,
    "6mo": 180,
    "1y": 365,
    "5y": 1825,
}

# Range token -> Yahoo chart range
YAHOO_RANGES: dict[str, str] = {token: token for token in COINGECKO_DAYS}


def coingecko_days(range_: str) -> int:
    return COINGECKO_DAYS.get(range_, DEFAULT_DAYS)


def yahoo_range(range_: str) -> str:
    return YAHOO_RANGES.get(range_, DEFAULT_RANGE)


class HistoryAggregator:
    """Price series for a single id.

    Crypto: CoinGecko market chart, then Binance klines on any failure.
    Everything else: Yahoo chart, normalized for Agorot.

    Failures come back as ``HistoryError``. Upstream auth/server failures
    carry ``upstream_status`` 502 (504 for timeouts) so the HTTP layer can
    escalate them instead of reporting missing data.
    """

    def __init__(
        self,
        coingecko: CryptoHistoryProvider,
        yahoo: YahooClient,
        binance: CryptoHistoryProvider | None = None,
        normalizer: CurrencyNormalizer | None = None,
    ) -> None:
        self._coingecko = coingecko
        self._yahoo = yahoo
        self._binance = binance
        self._normalizer = normalizer or CurrencyNormalizer()

    async def get_history(
        self,
        id: str | InternalId,
        range_: str = DEFAULT_RANGE,
        interval: str = "1d",
    ) -> HistoryResult | HistoryError:
        request_id = str(id)
        internal_id = resolve(id)
        if internal_id is None:
            return HistoryError(id=request_id, error=f"Invalid id: {request_id!r}")

        provider, symbol = route(internal_id)
        if provider is Provider.COINGECKO:
            result = await self._crypto_history(request_id, symbol, range_)
        else:
            result = await self._yahoo_history(request_id, symbol, range_, interval)
        if isinstance(result, HistoryError):
            return result
        return result.model_copy(update={"id": request_id})

    async def _crypto_history(
        self, request_id: str, coin_id: str, range_: str
    ) -> HistoryResult | HistoryError:
        days = coingecko_days(range_)
        try:
            return await self._coingecko.get_history(coin_id, days)
        except UpstreamError as e:
            if self._binance is None:
                logger.error("CoinGecko history failed for %s: %s", coin_id, e)
                return HistoryError(id=request_id, error=NOT_FOUND_MESSAGE)
            logger.warning("CoinGecko history failed for %s (%s), trying Binance", coin_id, e)

        try:
            return await self._binance.get_history(coin_id, days)
        except UpstreamError as e:
            logger.error("Binance history fallback failed for %s: %s", coin_id, e)
            return HistoryError(id=request_id, error=NOT_FOUND_MESSAGE)

    async def _yahoo_history(
        self, request_id: str, symbol: str, range_: str, interval: str
    ) -> HistoryResult | HistoryError:
        try:
            result = await self._yahoo.get_history(symbol, yahoo_range(range_), interval)
        except NotFound as e:
            logger.info("No Yahoo history for %s: %s", symbol, e)
            return HistoryError(id=request_id, error=NOT_FOUND_MESSAGE)
        except ProviderUnavailable as e:
            logger.error("Yahoo history unavailable for %s: %s", symbol, e)
            return HistoryError(id=request_id, error=str(e), upstream_status=502)
        except FetchTimeoutError as e:
            logger.error("Yahoo history timed out for %s: %s", symbol, e)
            return HistoryError(
                id=request_id,
                error=f"Upstream Yahoo timeout after {e.timeout}s",
                upstream_status=504,
            )
        except UpstreamError as e:
            logger.error("Yahoo history failed for %s: %s", symbol, e)
            return HistoryError(
                id=request_id, error=f"Upstream Yahoo failure: {e}", upstream_status=502
            )
        return self._normalizer.normalize_history(symbol, result)
