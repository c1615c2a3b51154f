"""Quote aggregation: resolve ids, fan out per provider, reassemble in order."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from marketfeed.aggregate.currency import CurrencyNormalizer
from marketfeed.core.exceptions import UpstreamError
from marketfeed.core.models import InternalId, Provider, QuoteResult
from marketfeed.identity.resolver import resolve, route
from marketfeed.providers.base import QuoteProvider

logger = logging.getLogger(__name__)


@dataclass
class ProviderBatch:
    """Per-pass grouping of request ids by provider. Never persisted.

    ``entries`` keeps request order: ``(request id, provider, symbol)``,
    with ``provider`` None for ids that could not be resolved.
    """

    entries: list[tuple[str, Provider | None, str | None]] = field(default_factory=list)

    def add(self, request_id: str, provider: Provider | None, symbol: str | None) -> None:
        self.entries.append((request_id, provider, symbol))

    def symbols(self, provider: Provider) -> list[str]:
        """Distinct provider symbols, first-seen order."""
        return list(
            dict.fromkeys(s for _, p, s in self.entries if p is provider and s is not None)
        )


class QuoteAggregator:
    """Latest prices for a mixed list of ids.

    Guarantees one result per requested id, in request order, each carrying
    either a price or an error. A failure for one symbol never affects
    another.
    """

    def __init__(
        self,
        coingecko: QuoteProvider,
        yahoo: QuoteProvider,
        normalizer: CurrencyNormalizer | None = None,
    ) -> None:
        self._providers: dict[Provider, QuoteProvider] = {
            Provider.COINGECKO: coingecko,
            Provider.YAHOO: yahoo,
        }
        self._normalizer = normalizer or CurrencyNormalizer()

    def build_batch(self, ids: Sequence[str | InternalId]) -> ProviderBatch:
        batch = ProviderBatch()
        for raw in ids:
            request_id = str(raw)
            internal_id = resolve(raw)
            if internal_id is None:
                batch.add(request_id, None, None)
                continue
            provider, symbol = route(internal_id)
            batch.add(request_id, provider, symbol)
        return batch

    async def get_quotes(self, ids: Sequence[str | InternalId]) -> list[QuoteResult]:
        batch = self.build_batch(ids)
        providers = list(self._providers)
        answers = await asyncio.gather(
            *(self._fetch(p, batch.symbols(p)) for p in providers)
        )
        by_provider = dict(zip(providers, answers))

        results: list[QuoteResult] = []
        for request_id, provider, symbol in batch.entries:
            if provider is None:
                results.append(QuoteResult.failure(request_id, f"Invalid id: {request_id!r}"))
                continue
            quote = by_provider[provider].get(symbol)
            if quote is None:
                results.append(
                    QuoteResult.failure(request_id, f"No data available for {request_id}")
                )
                continue
            if provider is Provider.YAHOO:
                quote = self._normalizer.normalize_quote(symbol, quote)
            results.append(quote.model_copy(update={"id": request_id}))
        return results

    async def _fetch(self, provider: Provider, symbols: list[str]) -> dict[str, QuoteResult]:
        if not symbols:
            return {}
        try:
            return await self._providers[provider].get_quotes(symbols)
        except UpstreamError as e:
            logger.error("%s quotes failed for %d symbols: %s", provider, len(symbols), e)
            return {
                s: QuoteResult.failure(s, f"{provider.value} error: {e}") for s in symbols
            }
