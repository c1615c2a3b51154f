"""Provider protocols: the interface the aggregators depend on.

Architecture
------------
Each upstream API gets one client class that owns its URLs, payload shapes
and fallback rules:

    upstream JSON → typed payload model → QuoteResult / HistoryResult

Raw payloads are validated into provider-specific Pydantic models at the
boundary (unknown fields ignored). A shape mismatch raises ``ParseError``
instead of leaking optional-chain lookups into business logic.

Clients key their results by provider-native symbol. Mapping back to the
caller's ids is the aggregator's job.
"""

from __future__ import annotations

import time
from typing import Any, Protocol, Sequence, TypeVar, runtime_checkable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from marketfeed.core.exceptions import ParseError
from marketfeed.core.models import HistoryResult, QuoteResult, SearchResult

M = TypeVar("M", bound=BaseModel)


def now_ms() -> int:
    return int(time.time() * 1000)


def validate_payload(model: type[M], data: Any, *, provider: str, what: str) -> M:
    """Validate ``data`` into ``model`` or raise ParseError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(
            f"Unexpected {provider} {what} payload",
            status=200,
            context={"provider": provider, "reason": str(e.errors()[:3])},
        ) from e


@runtime_checkable
class QuoteProvider(Protocol):
    """Batch latest-price lookup keyed by provider symbol."""

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, QuoteResult]:
        """Return one QuoteResult per distinct input symbol.

        Per-symbol failures are carried in ``QuoteResult.error``; this method
        only raises for programming errors.
        """
        ...


@runtime_checkable
class SearchProvider(Protocol):
    """Free-text instrument search."""

    async def search(self, query: str) -> list[SearchResult]: ...


@runtime_checkable
class CryptoHistoryProvider(Protocol):
    """Day-count based price history (CoinGecko, Binance)."""

    async def get_history(self, coin_id: str, days: int) -> HistoryResult:
        """Raises UpstreamError subclasses on failure."""
        ...
