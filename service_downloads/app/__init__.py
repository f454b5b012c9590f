"""
Downloads service package for the Asset Marketplace access layer.

The service fronts download-related requests, enforcing:
- Rate limiting: per-minute and per-hour fixed windows keyed by client IP
- Caching: per-user download status memoized in an in-process TTL cache
- Authentication: session tokens resolved against the hosted backend

Structure:
- app.main: FastAPI app, routes and lifecycle wiring.
- app.adapters: HTTP clients for the hosted backend.
- app.caching: TTL cache and key conventions.
- app.ratelimit: Fixed-window limiter, tiers and request middleware.
- app.domain: Authentication and download quota logic.
"""
