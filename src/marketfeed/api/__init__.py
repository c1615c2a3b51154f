"""HTTP API over MarketDataService."""

from marketfeed.api.app import create_app

__all__ = ["create_app"]
