"""Minor-unit (Agorot) detection and rescaling for TASE instruments.

Yahoo quotes some Tel Aviv securities in Agorot (1/100 ILS), either
labelled with the explicit code ``ILA`` or, inconsistently, with ``ILS``.
Detection:

- code ``ILA``: always minor unit, for every symbol including indices;
- code ``ILS`` on a non-index ``.TA`` symbol whose reference value is above
  ``minor_unit_threshold``: assumed minor unit.

The threshold heuristic can misclassify genuinely high-priced shares. It
is kept configurable and unchanged pending product clarification.
"""

from __future__ import annotations

import logging

from marketfeed.core.config import NormalizationConfig
from marketfeed.core.models import HistoryPoint, HistoryResult, QuoteResult

logger = logging.getLogger(__name__)

MINOR_UNIT = "ILA"
MAJOR_UNIT = "ILS"
LOCAL_EXCHANGE_SUFFIX = ".TA"
INDEX_PREFIX = "^"


def is_local_exchange(symbol: str) -> bool:
    return symbol.endswith(LOCAL_EXCHANGE_SUFFIX)


def is_index(symbol: str) -> bool:
    return symbol.startswith(INDEX_PREFIX)


class CurrencyNormalizer:
    """Rewrites minor-unit prices and series to the major unit."""

    def __init__(self, config: NormalizationConfig | None = None) -> None:
        self._threshold = (config or NormalizationConfig()).minor_unit_threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def is_minor_unit(self, symbol: str, currency: str | None, reference: float | None) -> bool:
        if currency == MINOR_UNIT:
            return True
        return (
            currency == MAJOR_UNIT
            and is_local_exchange(symbol)
            and not is_index(symbol)
            and reference is not None
            and reference > self._threshold
        )

    def normalize_quote(self, symbol: str, quote: QuoteResult) -> QuoteResult:
        """Scale the price; ``change_pct`` is a ratio and stays as is."""
        if not quote.ok or not self.is_minor_unit(symbol, quote.currency, quote.price):
            return quote
        logger.debug("Rescaling %s quote %s from Agorot", symbol, quote.price)
        return quote.model_copy(update={"price": quote.price / 100, "currency": MAJOR_UNIT})

    def normalize_history(self, symbol: str, result: HistoryResult) -> HistoryResult:
        """Scale every point, using the latest point as the reference value."""
        reference = result.points[-1].value if result.points else None
        if not self.is_minor_unit(symbol, result.currency, reference):
            return result
        logger.debug("Rescaling %d %s history points from Agorot", len(result.points), symbol)
        points = [HistoryPoint(t=p.timestamp, v=p.value / 100) for p in result.points]
        return result.model_copy(update={"points": points, "currency": MAJOR_UNIT})
