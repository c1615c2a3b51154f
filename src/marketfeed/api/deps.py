"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from fastapi import Request

from marketfeed.core.config import MarketFeedConfig
from marketfeed.core.models import (
    FxResult,
    HistoryError,
    HistoryResult,
    InternalId,
    QuoteResult,
    SearchResult,
)


class MarketData(Protocol):
    """What the routes need from MarketDataService."""

    async def get_quotes(self, ids: Sequence[str | InternalId]) -> list[QuoteResult]: ...

    async def get_history(
        self, id: str | InternalId, range_: str = "1mo", interval: str = "1d"
    ) -> HistoryResult | HistoryError: ...

    async def search(self, query: str) -> list[SearchResult]: ...

    async def get_fx(self, base: str | None = None, quote: str | None = None) -> FxResult: ...


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: MarketFeedConfig
    service: MarketData


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> MarketFeedConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_service(request: Request) -> MarketData:
    """Dependency: retrieve the market data service."""
    return request.app.state.app_state.service


def get_request_id(request: Request) -> str:
    """Platform request id for error reports, or ``"unknown"``."""
    return (
        request.headers.get("x-vercel-id")
        or request.headers.get("x-request-id")
        or "unknown"
    )
