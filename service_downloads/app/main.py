"""
Downloads service for the Asset Marketplace access layer.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, Request, Response
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.metrics import MetricsCollector
from .adapters.auth_client import AuthClient
from .adapters.backend_client import BackendClient
from .caching.ttl_cache import TTLCache
from .domain.auth_middleware import AuthMiddleware
from .domain.download_status import DownloadStatusService
from .ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    TieredRateLimiter,
)
from .ratelimit.middleware import RateLimitMiddleware, get_client_ip


class DownloadRequest(BaseModel):
    """Body of ``POST /api/downloads``."""
    resource_id: str = Field(min_length=1)


class DownloadsService(BaseService):
    """Download status and registration endpoints."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        *,
        cache: Optional[TTLCache] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        auth_client: Optional[AuthClient] = None,
        backend_client: Optional[BackendClient] = None
    ):
        super().__init__("downloads", 8000, config=config or get_config("downloads", 8000), metrics=metrics)

        self.cache = cache or TTLCache(name="status_cache")
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(name="download_rate_limiter")
        self.download_limiter = TieredRateLimiter(self.rate_limiter, self._download_policies())
        self.rate_limit_middleware = RateLimitMiddleware(self.download_limiter, metrics=self.metrics)

        self.auth_client = auth_client or AuthClient(
            self.config.backend_url,
            api_key=self.config.backend_anon_key,
            timeout=self.config.backend_timeout_seconds
        )
        self.backend_client = backend_client or BackendClient(
            self.config.backend_url,
            api_key=self.config.backend_anon_key,
            timeout=self.config.backend_timeout_seconds
        )
        self.auth_middleware = AuthMiddleware(self.auth_client)
        self.status_service = DownloadStatusService(
            self.backend_client,
            self.cache,
            timezone=self.config.download_timezone,
            cache_ttl=self.config.download_status_cache_ttl_seconds
        )

        @self.app.on_event("startup")
        async def _startup():
            interval = self.config.sweep_interval_seconds
            await self.cache.start(interval, on_sweep=self._sweep_recorder("status_cache"))
            await self.rate_limiter.start(interval, on_sweep=self._sweep_recorder("rate_limiter"))
            if self.config.metrics_port:
                self.metrics.start_metrics_server(self.config.metrics_port)
            self.logger.warning(
                "Rate limits and cache are process-local; each worker enforces its own copy",
                sweep_interval_seconds=interval
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache.stop()
            await self.rate_limiter.stop()

        self._setup_download_routes()
        self.app.state.downloads_service = self

    def _download_policies(self):
        return [
            RateLimitPolicy(
                name="minute",
                max_requests=self.config.download_limit_per_minute,
                window_seconds=self.config.download_minute_window_seconds
            ),
            RateLimitPolicy(
                name="hour",
                max_requests=self.config.download_limit_per_hour,
                window_seconds=self.config.download_hour_window_seconds
            ),
        ]

    def _sweep_recorder(self, store: str):
        def _record(evicted: int):
            self.metrics.increment_counter("sweep_evictions_total", amount=evicted, store=store)
            size = self.cache.size if store == "status_cache" else self.rate_limiter.size
            self.metrics.set_gauge("store_entries", size, store=store)
        return _record

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"backend": self.backend_client.circuit_breaker.get_state()["state"]}

    def _setup_download_routes(self):
        """Set up download routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "downloads",
                "message": "Asset Marketplace - Downloads Service",
                "version": "1.0.0"
            }

        @self.app.get("/api/v1/status")
        async def api_status():
            """In-process store statistics."""
            return {
                "status": "operational",
                "cache": self.cache.get_stats(),
                "rate_limits": {
                    "tiers": self.download_limiter.describe(),
                    "stats": self.rate_limiter.get_stats(),
                },
                "circuit_breakers": {
                    "backend": self.backend_client.circuit_breaker.get_state()
                }
            }

        @self.app.get("/api/downloads/status")
        async def get_download_status(request: Request, response: Response):
            """Today's download usage for the caller; ``?t=`` bypasses the cache."""
            user_info = await self.auth_middleware.authenticate_request(request)
            force_refresh = "t" in request.query_params

            status, cache_hit = await self.status_service.get_status(
                user_info["user_id"],
                force_refresh=force_refresh,
                access_token=user_info["token"]
            )

            metric = "cache_hits_total" if cache_hit else "cache_misses_total"
            self.metrics.increment_counter(metric, cache_type="download_status")

            response.headers["Cache-Control"] = "private, max-age=30"
            response.headers["X-Cache-Status"] = "HIT" if cache_hit else "MISS"
            return status.model_dump()

        def enforce_download_rate_limit(request: Request) -> RateLimitResult:
            # Dependencies resolve before the body is validated, so every
            # request is counted, malformed ones included.
            return self.rate_limit_middleware.enforce(request)

        @self.app.post("/api/downloads")
        async def register_download(
            body: DownloadRequest,
            request: Request,
            response: Response,
            rate_result: RateLimitResult = Depends(enforce_download_rate_limit)
        ):
            """Throttle by IP, then record a download against the caller's quota."""
            user_info = await self.auth_middleware.authenticate_request(request)
            outcome = await self.status_service.register_download(
                user_info["user_id"],
                body.resource_id,
                ip_address=get_client_ip(request),
                user_agent=request.headers.get("User-Agent", ""),
                access_token=user_info["token"]
            )
            self.metrics.record_business_event("download_registered")

            for header, value in rate_result.to_headers().items():
                response.headers[header] = value

            payload: Dict[str, Any] = {
                "registration": outcome["registration"],
                "status": outcome["status"].model_dump(),
                "rate_limit": rate_result.to_dict(),
            }
            return payload


def create_app(**kwargs):
    """Create FastAPI application."""
    service = DownloadsService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = DownloadsService()
    service.run()
