"""Integration test fixtures: the real service stack, upstream HTTP mocked."""

from __future__ import annotations

import pytest

from marketfeed.core.config import MarketFeedConfig
from marketfeed.service import MarketDataService


@pytest.fixture
async def service(config: MarketFeedConfig) -> MarketDataService:
    """A MarketDataService wired exactly as in production."""
    async with MarketDataService(config) as svc:
        yield svc
