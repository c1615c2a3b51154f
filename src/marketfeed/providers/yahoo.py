"""Yahoo Finance: batch quotes, chart-derived quotes, history and search.

Uses the unauthenticated ``/v7/finance/quote``, ``/v8/finance/chart`` and
``/v1/finance/search`` endpoints. The quote endpoint regularly answers 401
without a session crumb; every symbol in such a chunk is then priced from
the chart endpoint instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence
from urllib.parse import quote

from aiolimiter import AsyncLimiter
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from marketfeed.core.config import YahooConfig
from marketfeed.core.exceptions import (
    HttpError,
    NotFound,
    ParseError,
    ProviderUnavailable,
    UpstreamError,
)
from marketfeed.core.models import (
    HistoryPoint,
    HistoryResult,
    QuoteResult,
    QuoteSource,
    SearchResult,
)
from marketfeed.net.reliable import ReliableHttpClient, parse_json_safe
from marketfeed.providers.base import now_ms, validate_payload

logger = logging.getLogger(__name__)

_QUOTE_PATH = "/v7/finance/quote"
_CHART_PATH = "/v8/finance/chart"
_SEARCH_PATH = "/v1/finance/search"
_SEARCH_LIMIT = 10
_SEARCH_TYPES = {"EQUITY", "ETF", "INDEX"}

# (range, interval) steps of decreasing resolution
CHART_QUOTE_CHAIN: tuple[tuple[str, str], ...] = (
    ("1d", "1m"),
    ("5d", "5m"),
    ("5d", "1d"),
)


def is_upstream_failure(status: int) -> bool:
    """Authentication or server failure, as opposed to "no such symbol"."""
    return status in (401, 403) or status >= 500


def default_currency(symbol: str) -> str:
    return "ILS" if symbol.endswith(".TA") else "USD"


# --- Payload models ---

_YAHOO_MODEL = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


class _ChartMeta(BaseModel):
    model_config = _YAHOO_MODEL

    currency: str | None = None
    regular_market_price: float | None = None
    regular_market_time: int | None = None
    regular_market_change_percent: float | None = None
    regular_market_previous_close: float | None = None
    previous_close: float | None = None
    chart_previous_close: float | None = None


class _ChartQuoteSeries(BaseModel):
    model_config = _YAHOO_MODEL

    close: list[float | None] = []


class _ChartIndicators(BaseModel):
    model_config = _YAHOO_MODEL

    quote: list[_ChartQuoteSeries] = []


class _ChartResult(BaseModel):
    model_config = _YAHOO_MODEL

    meta: _ChartMeta = _ChartMeta()
    timestamp: list[int | None] = []
    indicators: _ChartIndicators = _ChartIndicators()

    @property
    def closes(self) -> list[float | None]:
        return self.indicators.quote[0].close if self.indicators.quote else []


class _ChartBody(BaseModel):
    model_config = _YAHOO_MODEL

    result: list[_ChartResult] | None = None
    error: dict[str, Any] | None = None


class _ChartPayload(BaseModel):
    model_config = _YAHOO_MODEL

    chart: _ChartBody


class _QuoteEntry(BaseModel):
    model_config = _YAHOO_MODEL

    symbol: str
    currency: str | None = None
    regular_market_price: float | None = None
    regular_market_time: int | None = None
    regular_market_change_percent: float | None = None
    regular_market_previous_close: float | None = None


class _QuoteBody(BaseModel):
    model_config = _YAHOO_MODEL

    result: list[_QuoteEntry] | None = None
    error: dict[str, Any] | None = None


class _QuotePayload(BaseModel):
    model_config = _YAHOO_MODEL

    quote_response: _QuoteBody


class _SearchQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str | None = None
    quoteType: str | None = None
    shortname: str | None = None
    longname: str | None = None
    currency: str | None = None
    exchange: str | None = None


class _SearchPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    quotes: list[_SearchQuote] = []


def _change_pct(
    price: float,
    explicit: float | None,
    previous_close: float | None,
) -> float:
    """Day change in percent, from the provider field or the previous close.

    Both ``price`` and ``previous_close`` are raw provider values, so a
    minor-unit rescale applied later leaves the ratio intact.
    """
    if explicit is not None:
        return explicit
    if previous_close and previous_close > 0:
        return (price - previous_close) / previous_close * 100
    return 0.0


def quote_from_chart(symbol: str, chart: _ChartResult) -> QuoteResult:
    """Latest price from a chart result.

    Priority: ``meta.regularMarketPrice``, then the last non-null close
    (scanned from the end), then ``meta.previousClose``.
    """
    meta = chart.meta
    price: float | None = None
    timestamp = now_ms()

    if meta.regular_market_price is not None:
        price = meta.regular_market_price
        if meta.regular_market_time:
            timestamp = meta.regular_market_time * 1000
    else:
        closes = chart.closes
        for i in range(len(closes) - 1, -1, -1):
            if closes[i] is not None:
                price = closes[i]
                ts = chart.timestamp[i] if i < len(chart.timestamp) else None
                if ts:
                    timestamp = ts * 1000
                break

    if price is None and meta.previous_close:
        price = meta.previous_close
        if meta.regular_market_time:
            timestamp = meta.regular_market_time * 1000

    if price is None:
        return QuoteResult.failure(symbol, f"No price data found for {symbol}")

    previous_close = meta.regular_market_previous_close or meta.previous_close
    return QuoteResult(
        id=symbol,
        price=price,
        currency=meta.currency or default_currency(symbol),
        change_pct=_change_pct(price, meta.regular_market_change_percent, previous_close),
        timestamp=timestamp,
        source=QuoteSource.YAHOO,
    )


def _first_chart_result(data: Any, symbol: str) -> _ChartResult:
    payload = validate_payload(_ChartPayload, data, provider="yahoo", what="chart")
    if not payload.chart.result:
        raise NotFound(
            f"No chart data found for {symbol}",
            context={"provider": "yahoo", "symbol": symbol, "error": payload.chart.error},
        )
    return payload.chart.result[0]


class YahooClient:
    """Yahoo Finance client for equities, ETFs, indices and TASE tickers.

    Quote resolution per chunk of up to ``batch_size`` symbols:
    1. ``/v7/finance/quote?symbols=...``. Matched entries resolve; symbols
       missing from the response become per-symbol "not found" errors.
    2. If the chunk's call is unusable (401/403/5xx, timeout, transport
       failure, HTML or malformed body), each symbol is priced through the
       chart chain instead: ``(1d,1m) → (5d,5m) → (5d,1d)``, advancing only
       on a non-2xx status.
    """

    def __init__(
        self,
        http: ReliableHttpClient,
        config: YahooConfig | None = None,
    ) -> None:
        self._http = http
        self._config = config or YahooConfig()
        self._limiter = AsyncLimiter(max_rate=self._config.rate_limit, time_period=1.0)

    def _request_kwargs(self, timeout: float | None = None) -> dict[str, Any]:
        return {
            "timeout": timeout or self._config.timeout,
            "retries": self._config.retries,
            "limiter": self._limiter,
        }

    def _chart_url(self, symbol: str) -> str:
        return f"{self._config.base_url}{_CHART_PATH}/{quote(symbol, safe='')}"

    # --- Quotes ---

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, QuoteResult]:
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return {}

        size = self._config.batch_size
        chunks = [unique[i : i + size] for i in range(0, len(unique), size)]
        results: dict[str, QuoteResult] = {}
        for part in await asyncio.gather(*(self._quote_chunk(c) for c in chunks)):
            results.update(part)
        return {s: results[s] for s in unique}

    async def _quote_chunk(self, symbols: list[str]) -> dict[str, QuoteResult]:
        if self._config.use_quote_endpoint:
            try:
                return await self._batch_quote(symbols)
            except UpstreamError as e:
                logger.warning(
                    "Yahoo quote endpoint unusable for %d symbols (%s), using chart fallback",
                    len(symbols), e,
                )

        quotes = await asyncio.gather(*(self.chart_quote(s) for s in symbols))
        return dict(zip(symbols, quotes))

    async def _batch_quote(self, symbols: list[str]) -> dict[str, QuoteResult]:
        """One ``/v7/finance/quote`` call.

        Raises:
            UpstreamError: The call as a whole is unusable.
        """
        response = await self._http.fetch_reliable(
            f"{self._config.base_url}{_QUOTE_PATH}",
            params={"symbols": ",".join(symbols)},
            **self._request_kwargs(),
        )
        if not response.is_success:
            raise HttpError(
                f"Yahoo quote endpoint returned HTTP {response.status_code}",
                status=response.status_code,
                context={"provider": "yahoo"},
            )
        payload = validate_payload(
            _QuotePayload, parse_json_safe(response), provider="yahoo", what="quote"
        )
        if payload.quote_response.result is None:
            raise ParseError(
                "Yahoo quote response has no result list",
                status=response.status_code,
                context={"provider": "yahoo", "error": payload.quote_response.error},
            )

        by_symbol = {e.symbol.upper(): e for e in payload.quote_response.result}
        results: dict[str, QuoteResult] = {}
        for symbol in symbols:
            entry = by_symbol.get(symbol.upper())
            if entry is None:
                results[symbol] = QuoteResult.failure(symbol, f"Symbol {symbol} not found")
            elif entry.regular_market_price is None:
                results[symbol] = QuoteResult.failure(
                    symbol, f"No price data found for {symbol}"
                )
            else:
                results[symbol] = QuoteResult(
                    id=symbol,
                    price=entry.regular_market_price,
                    currency=entry.currency or default_currency(symbol),
                    change_pct=_change_pct(
                        entry.regular_market_price,
                        entry.regular_market_change_percent,
                        entry.regular_market_previous_close,
                    ),
                    timestamp=(
                        entry.regular_market_time * 1000
                        if entry.regular_market_time
                        else now_ms()
                    ),
                    source=QuoteSource.YAHOO,
                )
        return results

    async def chart_quote(self, symbol: str) -> QuoteResult:
        """Latest price for one symbol through the chart fallback chain.

        Never raises for upstream problems: every outcome is a QuoteResult.
        """
        response = None
        for range_, interval in CHART_QUOTE_CHAIN:
            try:
                response = await self._http.fetch_coalesced(
                    f"yahoo_chart_quote:{symbol}:{range_}:{interval}",
                    self._chart_url(symbol),
                    params={"range": range_, "interval": interval},
                    **self._request_kwargs(),
                )
            except UpstreamError as e:
                logger.error("Yahoo chart request failed for %s: %s", symbol, e)
                return QuoteResult.failure(symbol, f"Yahoo request failed for {symbol}: {e}")

            if response.is_success:
                break
            logger.warning(
                "Yahoo chart %s (%s/%s) returned HTTP %d",
                symbol, range_, interval, response.status_code,
            )
        else:
            status = response.status_code
            if is_upstream_failure(status):
                return QuoteResult.failure(symbol, f"Upstream Yahoo failure: HTTP {status}")
            return QuoteResult.failure(symbol, f"Symbol {symbol} not found (HTTP {status})")

        try:
            chart = _first_chart_result(parse_json_safe(response), symbol)
        except NotFound as e:
            return QuoteResult.failure(symbol, str(e))
        except UpstreamError as e:
            logger.warning("Unreadable Yahoo chart for %s: %s", symbol, e)
            return QuoteResult.failure(symbol, f"Failed to parse chart response for {symbol}: {e}")
        return quote_from_chart(symbol, chart)

    # --- History ---

    async def get_history(self, symbol: str, range_: str, interval: str = "1d") -> HistoryResult:
        """Close-price series from the chart endpoint.

        ``currency`` is the raw provider code (``ILA`` stays ``ILA``);
        minor-unit normalization is applied by the caller. Points with null
        or non-positive closes are dropped.

        Raises:
            ProviderUnavailable: 401/403/5xx from Yahoo.
            NotFound: Any other non-2xx, or an empty or malformed chart.
            FetchTimeoutError / TransportError: see ``fetch_reliable``.
        """
        response = await self._http.fetch_coalesced(
            f"history:yahoo:{symbol}:{range_}:{interval}",
            self._chart_url(symbol),
            params={"range": range_, "interval": interval},
            **self._request_kwargs(self._config.history_timeout),
        )
        status = response.status_code
        if not response.is_success:
            if is_upstream_failure(status):
                raise ProviderUnavailable(
                    f"Upstream Yahoo failure: HTTP {status}",
                    status=status,
                    context={"provider": "yahoo", "symbol": symbol},
                )
            raise NotFound(
                f"Yahoo has no history for {symbol} (HTTP {status})",
                context={"provider": "yahoo", "symbol": symbol},
            )

        try:
            chart = _first_chart_result(parse_json_safe(response), symbol)
        except (HttpError, ParseError) as e:
            raise NotFound(
                f"Invalid Yahoo chart response for {symbol}",
                context={"provider": "yahoo", "symbol": symbol, "reason": str(e)},
            ) from e

        points = [
            HistoryPoint(t=ts * 1000, v=close)
            for ts, close in zip(chart.timestamp, chart.closes)
            if ts is not None and close is not None and close > 0
        ]
        return HistoryResult(
            id=symbol,
            points=points,
            currency=chart.meta.currency or default_currency(symbol),
            source=QuoteSource.YAHOO,
        )

    # --- Search ---

    async def search(self, query: str) -> list[SearchResult]:
        """Equities, ETFs and indices matching ``query``."""
        data = await self._http.fetch_json(
            f"{self._config.base_url}{_SEARCH_PATH}",
            params={"q": query, "quotesCount": 20, "newsCount": 0},
            **self._request_kwargs(),
        )
        payload = validate_payload(_SearchPayload, data, provider="yahoo", what="search")

        results: list[SearchResult] = []
        for item in payload.quotes:
            if not item.symbol:
                continue
            is_index = item.quoteType == "INDEX" or item.symbol.startswith("^")
            if item.quoteType not in _SEARCH_TYPES and not is_index:
                continue
            exchange = (item.exchange or "").upper()
            is_israeli = (
                item.symbol.endswith(".TA") or "TASE" in exchange or "TEL AVIV" in exchange
            )
            results.append(
                SearchResult(
                    id=f"yahoo:{item.symbol}",
                    type="index" if is_index else "etf" if item.quoteType == "ETF" else "equity",
                    provider="yahoo",
                    symbol=item.symbol,
                    name=item.shortname or item.longname or item.symbol,
                    currency=item.currency or ("ILS" if is_israeli else "USD"),
                    exchange=item.exchange,
                    country="IL" if is_israeli else "US",
                )
            )
            if len(results) >= _SEARCH_LIMIT:
                break
        return results
