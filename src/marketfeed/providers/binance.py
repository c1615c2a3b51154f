"""Binance public market data: the candle-based fallback for crypto.

Used only when CoinGecko cannot answer. Coin ids are translated to Binance
base assets through a static table and quoted against USDT.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict

from marketfeed.core.config import BinanceConfig
from marketfeed.core.exceptions import NotFound, ParseError
from marketfeed.core.models import HistoryPoint, HistoryResult, QuoteResult, QuoteSource
from marketfeed.net.reliable import ReliableHttpClient
from marketfeed.providers.base import now_ms, validate_payload

logger = logging.getLogger(__name__)

_TICKER_PATH = "/api/v3/ticker/24hr"
_KLINES_PATH = "/api/v3/klines"
_QUOTE_ASSET = "USDT"
_CLOSE_INDEX = 4

# CoinGecko id -> Binance base asset
_SYMBOL_MAP: dict[str, str] = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "solana": "SOL",
    "cardano": "ADA",
    "polkadot": "DOT",
    "chainlink": "LINK",
    "litecoin": "LTC",
    "bitcoin-cash": "BCH",
    "stellar": "XLM",
    "dogecoin": "DOGE",
    "avalanche-2": "AVAX",
    "polygon": "MATIC",
    "uniswap": "UNI",
    "cosmos": "ATOM",
    "algorand": "ALGO",
    "vechain": "VET",
    "filecoin": "FIL",
    "the-graph": "GRT",
    "aave": "AAVE",
}

_HOURS_PER_CANDLE: dict[str, int] = {"1h": 1, "4h": 4, "1d": 24}


def binance_symbol(coin_id: str) -> str:
    """Trading pair for a CoinGecko id, e.g. ``dogecoin`` -> ``DOGEUSDT``."""
    base = _SYMBOL_MAP.get(coin_id.lower(), coin_id.upper())
    return f"{base}{_QUOTE_ASSET}"


def kline_interval(days: int) -> str:
    """Candle width for a span: hourly up to a week, 4-hourly up to a month."""
    if days <= 7:
        return "1h"
    if days <= 30:
        return "4h"
    return "1d"


def kline_limit(days: int, interval: str, max_candles: int = 1000) -> int:
    """Number of candles covering ``days``, capped at ``max_candles``."""
    candles = math.ceil(days * 24 / _HOURS_PER_CANDLE[interval])
    return max(1, min(candles, max_candles))


class _Ticker24h(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str
    lastPrice: float
    priceChangePercent: float | None = None
    closeTime: int | None = None


class BinanceClient:
    """Ticker and kline lookups for CoinGecko ids."""

    def __init__(
        self,
        http: ReliableHttpClient,
        config: BinanceConfig | None = None,
    ) -> None:
        self._http = http
        self._config = config or BinanceConfig()

    def _request_kwargs(self) -> dict[str, Any]:
        return {"timeout": self._config.timeout, "retries": self._config.retries}

    async def get_quote(self, coin_id: str) -> QuoteResult:
        """Latest price from the 24h ticker.

        Raises:
            HttpError: Non-2xx (Binance answers 400 for unknown pairs).
            NotFound: The ticker reports no positive price.
        """
        pair = binance_symbol(coin_id)
        data = await self._http.fetch_json(
            f"{self._config.base_url}{_TICKER_PATH}",
            params={"symbol": pair},
            **self._request_kwargs(),
        )
        ticker = validate_payload(_Ticker24h, data, provider="binance", what="ticker")
        if ticker.lastPrice <= 0:
            raise NotFound(
                f"No Binance price for {pair}",
                context={"provider": "binance", "symbol": pair},
            )

        logger.info("Resolved %s via Binance %s", coin_id, pair)
        return QuoteResult(
            id=coin_id,
            price=ticker.lastPrice,
            currency="USD",
            change_pct=ticker.priceChangePercent or 0.0,
            timestamp=ticker.closeTime or now_ms(),
            source=QuoteSource.BINANCE_FALLBACK,
        )

    async def get_history(self, coin_id: str, days: int) -> HistoryResult:
        """Close prices from klines, one point per candle open time.

        Raises:
            HttpError: Non-2xx status.
            ParseError: Candles are not ``[openTime, o, h, l, close, ...]``.
            NotFound: No candles returned.
        """
        pair = binance_symbol(coin_id)
        interval = kline_interval(days)
        limit = kline_limit(days, interval, self._config.max_candles)

        data = await self._http.fetch_json(
            f"{self._config.base_url}{_KLINES_PATH}",
            params={"symbol": pair, "interval": interval, "limit": limit},
            **self._request_kwargs(),
        )
        if not isinstance(data, list):
            raise ParseError(
                "Unexpected binance klines payload",
                status=200,
                context={"provider": "binance", "symbol": pair},
            )
        if not data:
            raise NotFound(
                f"No Binance candles for {pair}",
                context={"provider": "binance", "symbol": pair},
            )

        points: list[HistoryPoint] = []
        for candle in data:
            try:
                points.append(
                    HistoryPoint(t=int(candle[0]), v=float(candle[_CLOSE_INDEX]))
                )
            except (TypeError, ValueError, IndexError) as e:
                raise ParseError(
                    f"Malformed Binance candle for {pair}",
                    status=200,
                    context={"provider": "binance", "candle": str(candle)[:100]},
                ) from e

        return HistoryResult(
            id=coin_id,
            points=points,
            currency="USD",
            source=QuoteSource.BINANCE_FALLBACK,
        )
