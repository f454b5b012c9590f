"""
Caching package for the downloads service: the in-process TTL cache and the
key conventions for per-user download bookkeeping.
"""

from .keys import (
    DOWNLOAD_LIMIT_PREFIX,
    DOWNLOAD_STATUS_CACHE_TTL,
    DOWNLOAD_STATUS_PREFIX,
    download_limit_cache_key,
    download_status_cache_key,
)
from .ttl_cache import CacheEntry, CacheMetrics, TTLCache

__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "TTLCache",
    "DOWNLOAD_LIMIT_PREFIX",
    "DOWNLOAD_STATUS_CACHE_TTL",
    "DOWNLOAD_STATUS_PREFIX",
    "download_limit_cache_key",
    "download_status_cache_key",
]
