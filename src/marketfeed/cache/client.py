"""Cached async client for the marketfeed HTTP API.

Cache-first reads with stale-while-revalidate: a fresh hit is returned
immediately and refreshed in the background; a miss is fetched and stored.
If that fetch fails, the last known value is served with ``is_stale=True``
(when one survives), otherwise the error propagates.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from marketfeed.cache.store import (
    CacheEntry,
    CacheType,
    SqliteCacheStore,
    cache_key,
    ttl_for,
)
from marketfeed.core.config import CacheConfig
from marketfeed.core.exceptions import HttpError, MarketFeedError
from marketfeed.core.models import FxResult, QuoteResult

logger = logging.getLogger(__name__)

QUOTE_BATCH_SIZE = 20
MAX_GET_URL_LENGTH = 2000

Fetcher = Callable[[], Awaitable[Any]]


class CachedResponse(BaseModel):
    """A value plus where it came from."""

    data: Any
    from_cache: bool = False
    is_stale: bool = False


class CachedMarketClient:
    """Client for ``/api/{search,quote,history,fx}`` backed by SqliteCacheStore.

    Use via ``async with CachedMarketClient(...) as client:`` or call
    ``aclose()``, which also cancels pending background refreshes.
    """

    def __init__(
        self,
        base_url: str,
        store: SqliteCacheStore,
        config: CacheConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._store = store
        self._config = config or CacheConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._refreshes: dict[str, asyncio.Task[None]] = {}

    async def __aenter__(self) -> CachedMarketClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        pending = list(self._refreshes.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._refreshes.clear()
        if self._owns_client:
            await self._client.aclose()

    @property
    def pending_refreshes(self) -> int:
        return len(self._refreshes)

    # --- Core cache strategy ---

    async def fetch_with_cache(
        self, key: str, type: CacheType, fetcher: Fetcher
    ) -> CachedResponse:
        """Cache-first fetch with background refresh and stale fallback."""
        ttl_ms = ttl_for(type, self._config)

        # Read the raw entry before get() purges it, for the stale fallback
        previous = await self._store.peek(key)
        fresh = await self._store.get(key)
        if fresh is not None:
            self._schedule_refresh(key, ttl_ms, fetcher)
            return CachedResponse(data=fresh.value, from_cache=True)

        try:
            data = await fetcher()
        except (httpx.HTTPError, MarketFeedError) as e:
            if previous is not None:
                logger.warning("Fetch failed for %s, serving stale entry: %s", key, e)
                return CachedResponse(data=previous.value, from_cache=True, is_stale=True)
            raise

        await self._store.set(key, data, ttl_ms)
        return CachedResponse(data=data)

    def _schedule_refresh(self, key: str, ttl_ms: int, fetcher: Fetcher) -> None:
        if key in self._refreshes:
            return
        task = asyncio.create_task(self._refresh(key, ttl_ms, fetcher))
        self._refreshes[key] = task
        task.add_done_callback(lambda _: self._refreshes.pop(key, None))

    async def _refresh(self, key: str, ttl_ms: int, fetcher: Fetcher) -> None:
        try:
            data = await fetcher()
        except (httpx.HTTPError, MarketFeedError) as e:
            logger.warning("Background refresh failed for %s: %s", key, e)
            return
        await self._store.set(key, data, ttl_ms)
        logger.debug("Refreshed cache entry %s", key)

    # --- HTTP ---

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        response = await self._client.request(method, url, **kwargs)
        if not response.is_success:
            raise HttpError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
                context={"url": url},
            )
        return response.json()

    # --- Operations ---

    async def search(self, query: str) -> list[dict[str, Any]]:
        query = (query or "").strip()
        if not query:
            return []
        result = await self.fetch_with_cache(
            cache_key("search", "q", query.lower()),
            "search",
            lambda: self._request("GET", "/search", params={"q": query}),
        )
        return result.data if isinstance(result.data, list) else []

    async def get_quotes(self, ids: Sequence[str]) -> list[QuoteResult]:
        """Quotes in request order, one per distinct id.

        Fresh per-id cache entries are used as is; the rest are fetched in
        batches of 20, by GET when the URL stays under 2000 characters and
        by POST otherwise. Only successful quotes are cached. A failed batch
        falls back to stale entries, then to per-id errors.

        Unlike the other operations, fresh quote hits are not refreshed in
        the background; the short quote TTL bounds their age instead.
        """
        unique = list(dict.fromkeys(ids))
        found: dict[str, QuoteResult] = {}
        stale: dict[str, CacheEntry] = {}
        missing: list[str] = []
        for id in unique:
            key = cache_key("quote", id)
            # Read the raw entry before get() purges it, for the stale fallback
            previous = await self._store.peek(key)
            entry = await self._store.get(key)
            if entry is not None:
                found[id] = QuoteResult.model_validate(entry.value)
                continue
            if previous is not None:
                stale[id] = previous
            missing.append(id)

        for start in range(0, len(missing), QUOTE_BATCH_SIZE):
            batch = missing[start : start + QUOTE_BATCH_SIZE]
            found.update(await self._fetch_quote_batch(batch, stale))

        return [
            found.get(id) or QuoteResult.failure(id, f"No data available for {id}")
            for id in unique
        ]

    async def _fetch_quote_batch(
        self, batch: list[str], stale: dict[str, CacheEntry]
    ) -> dict[str, QuoteResult]:
        query = urlencode([("ids", id) for id in batch])
        use_get = len(f"{self._base_url}/quote?{query}") < MAX_GET_URL_LENGTH
        try:
            if use_get:
                data = await self._request("GET", "/quote", params=[("ids", id) for id in batch])
            else:
                data = await self._request("POST", "/quote", json={"ids": batch})
        except (httpx.HTTPError, MarketFeedError) as e:
            logger.error("Quote batch of %d failed: %s", len(batch), e)
            return self._stale_quotes(batch, stale, str(e))

        items = data if isinstance(data, list) else [data] if data else []
        results: dict[str, QuoteResult] = {}
        ttl_ms = ttl_for("quote", self._config)
        for item in items:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            quote = QuoteResult.model_validate(item)
            results[quote.id] = quote
            if quote.ok:
                await self._store.set(cache_key("quote", quote.id), item, ttl_ms)
        return results

    @staticmethod
    def _stale_quotes(
        batch: list[str], stale: dict[str, CacheEntry], error: str
    ) -> dict[str, QuoteResult]:
        results: dict[str, QuoteResult] = {}
        for id in batch:
            entry = stale.get(id)
            if entry is not None:
                results[id] = QuoteResult.model_validate(entry.value).model_copy(
                    update={"is_stale": True}
                )
            else:
                results[id] = QuoteResult.failure(id, error)
        return results

    async def get_history(
        self, id: str, range_: str = "1mo", interval: str = "1d"
    ) -> dict[str, Any] | None:
        if not id:
            return None
        result = await self.fetch_with_cache(
            cache_key("history", id, range_, interval),
            "history",
            lambda: self._request(
                "GET", "/history", params={"id": id, "range": range_, "interval": interval}
            ),
        )
        return result.data or None

    async def get_fx(self, base: str = "USD", quote: str = "ILS") -> FxResult:
        result = await self.fetch_with_cache(
            cache_key("fx", base, quote),
            "fx",
            lambda: self._request("GET", "/fx", params={"base": base, "quote": quote}),
        )
        return FxResult.model_validate(result.data)
