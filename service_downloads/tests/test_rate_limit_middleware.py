"""
Unit tests for client IP extraction and the rate limit middleware.
"""

import pytest
from unittest.mock import MagicMock

from shared.errors import RateLimitError
from service_downloads.app.ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    RateLimitPolicy,
    TieredRateLimiter,
)
from service_downloads.app.ratelimit.middleware import (
    RateLimitMiddleware,
    UNKNOWN_CLIENT,
    get_client_ip,
)


def make_request(headers=None, path="/api/downloads"):
    """Mock FastAPI Request object."""
    request = MagicMock()
    request.headers = headers or {}
    request.url.path = path
    request.client.host = "10.0.0.1"
    return request


class TestGetClientIP:
    """Test cases for get_client_ip."""

    def test_first_forwarded_for_entry_wins(self):
        request = make_request({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.2, 10.0.0.3"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_falls_back_to_real_ip(self):
        request = make_request({"X-Real-IP": " 198.51.100.4 "})
        assert get_client_ip(request) == "198.51.100.4"

    def test_forwarded_for_preferred_over_real_ip(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.4"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_unknown_when_no_proxy_headers(self):
        """The socket peer is ignored; unidentified clients share a bucket."""
        assert get_client_ip(make_request()) == UNKNOWN_CLIENT == "unknown"


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


class TestRateLimitMiddleware:
    """Test cases for RateLimitMiddleware."""

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def limiter(self, clock):
        return FixedWindowRateLimiter(clock=clock)

    @pytest.fixture
    def middleware(self, limiter, metrics):
        tiered = TieredRateLimiter(limiter, [
            RateLimitPolicy("minute", 2, 60.0),
            RateLimitPolicy("hour", 10, 3600.0),
        ])
        return RateLimitMiddleware(tiered, metrics=metrics)

    def test_check_request_keys_by_ip(self, middleware, limiter):
        middleware.check_request(make_request({"X-Forwarded-For": "1.1.1.1"}))

        assert limiter.get_entry("1.1.1.1:minute").count == 1
        assert limiter.get_entry("1.1.1.1:hour").count == 1

    def test_check_request_blocked_records_metric(self, middleware, metrics):
        request = make_request({"X-Real-IP": "2.2.2.2"})
        middleware.check_request(request)
        middleware.check_request(request)

        result = middleware.check_request(request)

        assert result.allowed is False
        assert metrics.counters == [("rate_limit_rejections_total", {"tier": "minute"})]

    def test_unidentified_clients_share_bucket(self, middleware):
        middleware.check_request(make_request())
        middleware.check_request(make_request())
        assert middleware.check_request(make_request()).allowed is False

    def test_enforce_raises_with_retry_after(self, middleware, clock):
        request = make_request({"X-Forwarded-For": "3.3.3.3"})
        middleware.enforce(request)
        middleware.enforce(request)
        clock.advance(15)

        with pytest.raises(RateLimitError) as exc_info:
            middleware.enforce(request)

        error = exc_info.value
        assert error.status_code == 429
        assert error.retry_after == 45
        assert error.response_headers()["Retry-After"] == "45"
        assert error.details["tier"] == "minute"

    def test_enforce_returns_result_when_allowed(self, middleware):
        result = middleware.enforce(make_request({"X-Forwarded-For": "4.4.4.4"}))
        assert result.allowed is True
        assert result.remaining == 1
