"""Persistent client-side cache."""

from marketfeed.cache.client import CachedMarketClient, CachedResponse
from marketfeed.cache.store import CacheEntry, SqliteCacheStore, cache_key, ttl_for

__all__ = [
    "CacheEntry",
    "CachedMarketClient",
    "CachedResponse",
    "SqliteCacheStore",
    "cache_key",
    "ttl_for",
]
