"""ExchangeRate-API (free tier, no key): USD-based FX rates."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from marketfeed.core.config import FxConfig
from marketfeed.core.exceptions import NotFound, ValidationError
from marketfeed.core.models import FxResult
from marketfeed.net.reliable import ReliableHttpClient
from marketfeed.providers.base import now_ms, validate_payload

logger = logging.getLogger(__name__)

SUPPORTED_BASE = "USD"


class _RatesPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base: str | None = None
    rates: dict[str, float]


class ExchangeRateClient:
    """Single-rate lookups against ``/latest/<base>``."""

    def __init__(self, http: ReliableHttpClient, config: FxConfig | None = None) -> None:
        self._http = http
        self._config = config or FxConfig()

    async def get_rate(self, base: str = "USD", quote: str = "ILS") -> FxResult:
        """Rate for one currency pair.

        Raises:
            ValidationError: ``base`` is not USD.
            NotFound: The provider has no rate for ``quote``.
            UpstreamError: Fetch or parse failure.
        """
        base = base.strip().upper()
        quote = quote.strip().upper()
        if base != SUPPORTED_BASE:
            raise ValidationError(
                "Only USD base currency is supported",
                context={"field": "base", "value": base},
            )

        data = await self._http.fetch_json(
            f"{self._config.base_url}/latest/{base}",
            coalesce_key=f"fx:{base}",
            timeout=self._config.timeout,
            retries=self._config.retries,
        )
        payload = validate_payload(_RatesPayload, data, provider="exchangerate", what="rates")

        rate = payload.rates.get(quote)
        if not rate:
            raise NotFound(
                f"Exchange rate not found for {base}/{quote}",
                context={"provider": "exchangerate", "base": base, "quote": quote},
            )
        logger.debug("FX %s/%s = %s", base, quote, rate)
        return FxResult(base=base, quote=quote, rate=rate, timestamp=now_ms())
