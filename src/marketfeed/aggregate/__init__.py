"""Aggregation over provider clients: quotes, history, search, FX."""

from marketfeed.aggregate.currency import CurrencyNormalizer
from marketfeed.aggregate.fx import FxAggregator
from marketfeed.aggregate.history import HistoryAggregator, coingecko_days, yahoo_range
from marketfeed.aggregate.quotes import ProviderBatch, QuoteAggregator
from marketfeed.aggregate.search import SearchAggregator

__all__ = [
    "CurrencyNormalizer",
    "FxAggregator",
    "HistoryAggregator",
    "ProviderBatch",
    "QuoteAggregator",
    "SearchAggregator",
    "coingecko_days",
    "yahoo_range",
]
