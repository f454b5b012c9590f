"""
Request-level rate limiting for the downloads service.
"""

from typing import Optional

from fastapi import Request

from shared.errors import RateLimitError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from .fixed_window import RateLimitResult, TieredRateLimiter

UNKNOWN_CLIENT = "unknown"


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from proxy headers.

    Requests carrying neither ``X-Forwarded-For`` nor ``X-Real-IP`` all map
    to the shared ``"unknown"`` bucket.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


class RateLimitMiddleware:
    """Applies the tiered download throttle to incoming requests."""

    def __init__(self, rate_limiter: TieredRateLimiter, metrics: Optional[MetricsCollector] = None):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.logger = get_logger("downloads.rate_limit_middleware")

    def check_request(self, request: Request) -> RateLimitResult:
        """Count the request against its client IP and return the verdict."""
        client_ip = get_client_ip(request)
        set_user_context(client_ip=client_ip)
        result = self.rate_limiter.check(client_ip)

        if not result.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_ip=client_ip,
                path=request.url.path,
                tier=result.tier,
                retry_after=result.retry_after
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_rejections_total", tier=result.tier or "unknown")

        return result

    def enforce(self, request: Request) -> RateLimitResult:
        """Like ``check_request`` but raises ``RateLimitError`` on rejection."""
        result = self.check_request(request)
        if not result.allowed:
            raise RateLimitError(
                "Too many download requests, please retry later",
                retry_after=result.retry_after,
                details={
                    "tier": result.tier,
                    "limit": result.limit,
                    "retry_after_seconds": result.retry_after,
                },
                headers=result.to_headers()
            )
        return result
