"""
Unit tests for download quota computation and caching.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import DownloadLimitError, ExternalServiceError
from service_downloads.app.caching.ttl_cache import TTLCache
from service_downloads.app.domain.download_status import (
    DownloadStatus,
    DownloadStatusService,
    build_status,
    count_downloads_today,
    format_download_status,
    format_plan_name,
    get_download_limit_by_plan,
)

# 2024-03-10 15:00 UTC is 12:00 in Sao Paulo (UTC-3).
NOW = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


class TestPlanHelpers:
    """Test cases for plan limits and formatting."""

    @pytest.mark.parametrize("plan,expected", [
        ("free", 1),
        ("lite", 3),
        ("pro", 10),
        ("PLUS", 20),
        ("ultra", 20),
        ("enterprise", 1),
        (None, 1),
        ("", 1),
    ])
    def test_limit_by_plan(self, plan, expected):
        assert get_download_limit_by_plan(plan) == expected

    def test_format_plan_name(self):
        assert format_plan_name("pro") == "Pro"
        assert format_plan_name(None) == "Free"
        assert format_plan_name("mystery") == "Free"

    def test_format_download_status(self):
        status = build_status("pro", 2)
        assert format_download_status(status) == "2 / 10 downloads today"
        assert format_download_status(None) == "0 / 0 downloads today"

    def test_build_status(self):
        assert build_status("lite", 1) == DownloadStatus(current=1, limit=3, remaining=2, plan="lite", allowed=True)
        exhausted = build_status("free", 4)
        assert exhausted.remaining == 0
        assert exhausted.allowed is False


class TestCountDownloadsToday:
    """Test cases for count_downloads_today."""

    def test_counts_by_local_calendar_day(self):
        timestamps = [
            "2024-03-10T14:00:00Z",          # today
            "2024-03-10T02:30:00+00:00",     # 23:30 on the 9th locally
            "2024-03-11T02:30:00Z",          # 23:30 on the 10th locally
            "2024-03-09T18:00:00Z",          # yesterday
            "2024-03-10T12:00:00",           # naive -> UTC, today
        ]
        assert count_downloads_today(timestamps, "America/Sao_Paulo", now=NOW) == 3

    def test_skips_blank_values(self):
        assert count_downloads_today([None, "", "2024-03-10T14:00:00Z"], now=NOW) == 1

    def test_empty(self):
        assert count_downloads_today([], now=NOW) == 0

    def test_unparseable_rows_are_skipped(self):
        timestamps = ["2024-03-10T14:00:00+00:00", "garbage", "2024-13-40T10:00:00Z"]
        assert count_downloads_today(timestamps, now=NOW) == 1

    @pytest.mark.parametrize("value", [
        "2024-03-10T12:00:00.12345+00:00",
        "2024-03-10T12:00:00.1+00",
        "2024-03-10 12:00:00.123456789+0000",
        "2024-03-10T09:00:00.5-03:00",
    ])
    def test_postgres_timestamp_shapes(self, value):
        assert count_downloads_today([value], now=NOW) == 1


class TestDownloadStatusService:
    """Test cases for DownloadStatusService."""

    @pytest.fixture
    def backend(self):
        backend = MagicMock()
        backend.get_subscription_tier = AsyncMock(return_value="lite")
        backend.list_download_timestamps = AsyncMock(return_value=["2024-03-10T14:00:00Z"])
        backend.register_download = AsyncMock(return_value={"success": True, "download_id": "d-1"})
        return backend

    @pytest.fixture
    def cache(self, clock):
        return TTLCache(clock=clock)

    @pytest.fixture
    def service(self, backend, cache, clock):
        clock.now = NOW.timestamp()
        return DownloadStatusService(backend, cache, clock=clock)

    @pytest.mark.asyncio
    async def test_compute_status(self, service):
        status = await service.compute_status("user-1")
        assert status == DownloadStatus(current=1, limit=3, remaining=2, plan="lite", allowed=True)

    @pytest.mark.asyncio
    async def test_get_status_miss_then_hit(self, service, backend, cache):
        first, first_hit = await service.get_status("user-1")
        second, second_hit = await service.get_status("user-1")

        assert first_hit is False
        assert second_hit is True
        assert first == second
        assert backend.list_download_timestamps.await_count == 1
        assert "download_status:user-1" in cache
        assert cache.get("download_limit:user-1") == ("lite", 3)

    @pytest.mark.asyncio
    async def test_cached_status_expires_after_thirty_seconds(self, service, backend, clock):
        await service.get_status("user-1")
        clock.advance(30)

        _, hit = await service.get_status("user-1")

        assert hit is False
        assert backend.list_download_timestamps.await_count == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, service, backend):
        await service.get_status("user-1")
        backend.get_subscription_tier.return_value = "pro"

        status, hit = await service.get_status("user-1", force_refresh=True)

        assert hit is False
        assert status.plan == "pro"
        assert status.limit == 10

    @pytest.mark.asyncio
    async def test_invalidate_leaves_other_users(self, service, cache):
        await service.get_status("user-1")
        await service.get_status("user-10")

        service.invalidate("user-1")

        assert sorted(cache.keys()) == ["download_limit:user-10", "download_status:user-10"]

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, service, backend, cache):
        backend.get_subscription_tier.side_effect = ExternalServiceError("backend", "Profile not found")

        with pytest.raises(ExternalServiceError):
            await service.get_status("user-1")
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_can_download(self, service, backend):
        assert await service.can_download("user-1") is True
        backend.get_subscription_tier.return_value = "free"
        service.invalidate("user-1")
        assert await service.can_download("user-1") is False

    @pytest.mark.asyncio
    async def test_register_download_refreshes_status(self, service, backend, cache):
        await service.get_status("user-1")
        backend.list_download_timestamps.return_value = [
            "2024-03-10T14:00:00Z",
            "2024-03-10T14:30:00Z",
        ]

        outcome = await service.register_download("user-1", "res-9", "1.2.3.4", "pytest")

        backend.register_download.assert_awaited_once_with(
            "user-1", "res-9", "1.2.3.4", "pytest", access_token=None
        )
        assert outcome["registration"]["success"] is True
        assert outcome["status"].current == 2
        assert outcome["status"].remaining == 1
        assert cache.get("download_status:user-1").current == 2

    @pytest.mark.asyncio
    async def test_register_download_refused_when_quota_exhausted(self, service, backend):
        backend.get_subscription_tier.return_value = "free"

        with pytest.raises(DownloadLimitError) as exc_info:
            await service.register_download("user-1", "res-9", "1.2.3.4", "pytest")

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["limit"] == 1
        backend.register_download.assert_not_awaited()
