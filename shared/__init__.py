"""
Shared utilities for the Asset Marketplace access layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for backend calls
- circuit_breaker: Resilient external call protection
- periodic: Background tasks bound to a component's lifecycle
- base_service: FastAPI service skeleton

Do not import from service_* packages into shared/.
"""
