"""
Unit tests for request-scoped logging context.
"""

import pytest

from shared.logging import (
    add_request_context,
    clear_context,
    set_request_id,
    set_user_context,
)


class TestRequestContext:
    """Test cases for the correlation fields added to log events."""

    @pytest.fixture(autouse=True)
    def reset_context(self):
        clear_context()
        yield
        clear_context()

    def test_fields_are_copied_onto_events(self):
        set_request_id("req-1")
        set_user_context(user_id="user-1", client_ip="203.0.113.7")

        event = add_request_context(None, "info", {"event": "HTTP request"})

        assert event == {
            "event": "HTTP request",
            "request_id": "req-1",
            "user_id": "user-1",
            "client_ip": "203.0.113.7",
        }

    def test_unset_fields_are_omitted(self):
        set_user_context(client_ip="198.51.100.4")

        event = add_request_context(None, "info", {"event": "rate limited"})

        assert event == {"event": "rate limited", "client_ip": "198.51.100.4"}

    def test_generated_request_id(self):
        request_id = set_request_id()
        assert request_id
        assert add_request_context(None, "info", {})["request_id"] == request_id

    def test_clear_context(self):
        set_request_id("req-2")
        set_user_context(user_id="user-2", client_ip="192.0.2.1")

        clear_context()

        assert add_request_context(None, "info", {}) == {}
