"""Unified instrument search: local TASE dataset, CoinGecko and Yahoo."""

from __future__ import annotations

import asyncio
import logging

from marketfeed.core.exceptions import UpstreamError, ValidationError
from marketfeed.core.models import SearchResult
from marketfeed.identity.tase import TaseDataset, TaseInstrument, load_dataset
from marketfeed.providers.base import SearchProvider

logger = logging.getLogger(__name__)

MAX_RESULTS = 20
_CRYPTO_KEYWORDS = ("bitcoin", "btc", "ethereum", "eth", "crypto", "coin")


def _local_result(inst: TaseInstrument) -> SearchResult:
    return SearchResult(
        id=f"tase:{inst.security_id}",
        type=inst.type,
        provider="tase-local",
        symbol=inst.yahoo_symbol,
        name=inst.name_en,
        currency=inst.currency,
        exchange="TASE",
        country="IL",
        extra={"securityNumber": inst.security_id},
    )


class SearchAggregator:
    """Merges local and remote search results.

    Local TASE matches come first. A purely numeric query with a local
    match skips Yahoo; CoinGecko is skipped for numeric queries unless the
    text looks like a crypto term. Results are deduplicated by id (first
    occurrence wins) and capped at 20.
    """

    def __init__(
        self,
        coingecko: SearchProvider,
        yahoo: SearchProvider,
        dataset: TaseDataset | None = None,
    ) -> None:
        self._coingecko = coingecko
        self._yahoo = yahoo
        self._dataset = dataset

    @property
    def dataset(self) -> TaseDataset:
        if self._dataset is None:
            self._dataset = load_dataset()
        return self._dataset

    async def search(self, query: str) -> list[SearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValidationError(
                'Query parameter "q" is required', context={"field": "q"}
            )

        local = [_local_result(inst) for inst in self.dataset.search(query)]
        is_numeric = query.isdigit()
        looks_like_crypto = any(kw in query.lower() for kw in _CRYPTO_KEYWORDS)

        remote = []
        if looks_like_crypto or not is_numeric:
            remote.append(self._remote("coingecko", self._coingecko, query))
        if not (is_numeric and local):
            remote.append(self._remote("yahoo", self._yahoo, query))

        merged: dict[str, SearchResult] = {}
        for batch in [local, *await asyncio.gather(*remote)]:
            for result in batch:
                merged.setdefault(result.id, result)
        return list(merged.values())[:MAX_RESULTS]

    async def _remote(
        self, name: str, provider: SearchProvider, query: str
    ) -> list[SearchResult]:
        try:
            return await provider.search(query)
        except UpstreamError as e:
            logger.warning("%s search failed for %r: %s", name, query, e)
            return []
