"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope. ``details``/``requestId`` only on 500s."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    details: str | None = None
    requestId: str | None = None


# -- Quotes --


class QuoteRequest(BaseModel):
    """POST /quote body. Each symbol adds ``yahoo:<symbol>``."""

    ids: list[str] | None = None
    symbols: list[str] | None = None


# -- Health --


class HealthResponse(BaseModel):
    """Liveness probe."""

    ok: bool = True
    timestamp: int
    version: str


# -- Cache headers --

QUOTE_CACHE = "max-age=0, s-maxage=60, stale-while-revalidate=300"
QUOTE_CDN_CACHE = "public, s-maxage=60, stale-while-revalidate=300"
HISTORY_CACHE = "s-maxage=3600, stale-while-revalidate=86400"
ERROR_CACHE = "s-maxage=60, stale-while-revalidate=300"
FX_CACHE = "s-maxage=3600, stale-while-revalidate=86400"
SEARCH_CACHE = "s-maxage=86400, stale-while-revalidate=604800"
NO_CACHE = "no-cache"


def cache_headers(policy: str, cdn: str | None = None) -> dict[str, str]:
    headers = {"Cache-Control": policy}
    if cdn is not None:
        headers["CDN-Cache-Control"] = cdn
    return headers
