"""FastAPI route definitions for the marketfeed API."""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

import marketfeed
from marketfeed.api.deps import MarketData, get_service
from marketfeed.api.schemas import (
    ERROR_CACHE,
    FX_CACHE,
    HISTORY_CACHE,
    NO_CACHE,
    QUOTE_CACHE,
    QUOTE_CDN_CACHE,
    SEARCH_CACHE,
    HealthResponse,
    QuoteRequest,
    cache_headers,
)
from marketfeed.core.exceptions import ValidationError
from marketfeed.core.models import HistoryError

router = APIRouter()


def _respond(
    request: Request,
    content: Any,
    headers: dict[str, str],
    status_code: int = 200,
) -> Response:
    """JSON response, or headers only for HEAD."""
    if request.method == "HEAD":
        return Response(status_code=status_code, headers=headers, media_type="application/json")
    return JSONResponse(content=content, status_code=status_code, headers=headers)


def parse_ids(values: list[str] | None) -> list[str]:
    """Flatten repeated and comma-separated ids; drop blanks and duplicates."""
    ids: list[str] = []
    for value in values or []:
        ids.extend(part.strip() for part in value.split(","))
    return list(dict.fromkeys(i for i in ids if i))


# -- Health --


@router.api_route("/health", methods=["GET", "HEAD"], response_model=HealthResponse)
async def health_check(request: Request):
    """Liveness probe."""
    body = HealthResponse(
        timestamp=int(time.time() * 1000), version=marketfeed.__version__
    )
    return _respond(request, body.model_dump(), {})


# -- Quotes --


@router.api_route("/quote", methods=["GET", "HEAD"])
async def get_quotes(
    request: Request,
    ids: list[str] | None = Query(None, description="Repeated or comma-separated ids"),
    service: MarketData = Depends(get_service),
):
    """Latest prices for a list of ids, one entry per distinct id."""
    id_list = parse_ids(ids)
    if not id_list:
        raise ValidationError(
            'Query parameter "ids" is required '
            "(e.g., ?ids=yahoo:AAPL&ids=cg:bitcoin or ?ids=yahoo:AAPL,cg:bitcoin)",
            context={"field": "ids"},
        )
    results = await service.get_quotes(id_list)
    return _respond(
        request,
        [r.to_wire() for r in results],
        cache_headers(QUOTE_CACHE, QUOTE_CDN_CACHE),
    )


@router.post("/quote")
async def post_quotes(
    body: QuoteRequest | None = Body(None),
    service: MarketData = Depends(get_service),
):
    """Batch quotes for ids too many to fit in a URL."""
    if body is None or (body.ids is None and body.symbols is None):
        raise ValidationError(
            'Either "ids" or "symbols" must be provided', context={"field": "ids"}
        )
    requested = [
        *(body.ids or []),
        *(f"yahoo:{s.strip()}" for s in body.symbols or [] if s and s.strip()),
    ]
    id_list = list(dict.fromkeys(i.strip() for i in requested if i and i.strip()))
    if not id_list:
        raise ValidationError("No valid IDs or symbols provided", context={"field": "ids"})

    results = await service.get_quotes(id_list)
    return JSONResponse(
        content=[r.to_wire() for r in results], headers=cache_headers(NO_CACHE)
    )


# -- History --


@router.api_route("/history", methods=["GET", "HEAD"])
async def get_history(
    request: Request,
    id: str | None = Query(None),
    range_: str = Query("1mo", alias="range"),
    interval: str = Query("1d"),
    service: MarketData = Depends(get_service),
):
    """Price series for one id.

    Not-found comes back as ``200 {id, error}``; upstream auth/server
    failures as ``502`` (``504`` on timeout) with the same body.
    """
    if not id or not id.strip():
        raise ValidationError('Query parameter "id" is required', context={"field": "id"})

    result = await service.get_history(id.strip(), range_, interval)
    if isinstance(result, HistoryError):
        return _respond(
            request,
            result.to_wire(),
            cache_headers(ERROR_CACHE),
            status_code=result.upstream_status or 200,
        )
    return _respond(request, result.to_wire(), cache_headers(HISTORY_CACHE))


# -- FX --


@router.get("/fx")
async def get_fx(
    base: str = Query("USD"),
    quote: str = Query("ILS"),
    service: MarketData = Depends(get_service),
):
    """Exchange rate (USD base only)."""
    result = await service.get_fx(base, quote)
    return JSONResponse(
        content=result.model_dump(mode="json"), headers=cache_headers(FX_CACHE)
    )


# -- Search --


@router.get("/search")
async def search(
    q: str | None = Query(None),
    service: MarketData = Depends(get_service),
):
    """Instrument search: TASE local matches first, then crypto and equities."""
    if not q or not q.strip():
        raise ValidationError('Query parameter "q" is required', context={"field": "q"})
    results = await service.search(q)
    return JSONResponse(
        content=[r.to_wire() for r in results], headers=cache_headers(SEARCH_CACHE)
    )
