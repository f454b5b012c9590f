"""
Rate limiting package for the downloads service.

Holds the fixed-window counters, the tiered per-minute/per-hour download
throttle and the request middleware that keys it by client IP.
"""

from .fixed_window import (
    DOWNLOAD_RATE_LIMITS,
    FixedWindowRateLimiter,
    RateLimitEntry,
    RateLimitPolicy,
    RateLimitResult,
    TieredRateLimiter,
    check_download_rate_limit,
)
from .middleware import RateLimitMiddleware, UNKNOWN_CLIENT, get_client_ip

__all__ = [
    "DOWNLOAD_RATE_LIMITS",
    "FixedWindowRateLimiter",
    "RateLimitEntry",
    "RateLimitPolicy",
    "RateLimitResult",
    "TieredRateLimiter",
    "check_download_rate_limit",
    "RateLimitMiddleware",
    "UNKNOWN_CLIENT",
    "get_client_ip",
]
