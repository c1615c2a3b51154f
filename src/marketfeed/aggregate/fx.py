"""FX lookups with request validation."""

from __future__ import annotations

import logging
import re

from marketfeed.core.exceptions import ValidationError
from marketfeed.core.models import FxResult
from marketfeed.providers.exchangerate import ExchangeRateClient

logger = logging.getLogger(__name__)

DEFAULT_BASE = "USD"
DEFAULT_QUOTE = "ILS"
_CODE_RE = re.compile(r"^[A-Za-z]{3}$")


class FxAggregator:
    """Validates currency codes, then delegates to ExchangeRateClient."""

    def __init__(self, client: ExchangeRateClient) -> None:
        self._client = client

    async def get_rate(
        self, base: str | None = None, quote: str | None = None
    ) -> FxResult:
        base = (base or DEFAULT_BASE).strip()
        quote = (quote or DEFAULT_QUOTE).strip()
        for field, code in (("base", base), ("quote", quote)):
            if not _CODE_RE.match(code):
                raise ValidationError(
                    f"Invalid currency code for {field}: {code!r}",
                    context={"field": field, "value": code},
                )
        return await self._client.get_rate(base.upper(), quote.upper())
