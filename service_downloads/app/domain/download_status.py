"""
Per-user daily download quota.

Each subscription plan grants a fixed number of downloads per calendar day,
counted in the marketplace's home timezone. Computing the status costs two
backend round trips, so results are memoized in the TTL cache and
invalidated whenever the user registers a new download.
"""

import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from shared.errors import DownloadLimitError
from shared.logging import get_logger
from ..adapters.backend_client import BackendClient
from ..caching.keys import (
    DOWNLOAD_STATUS_CACHE_TTL,
    download_limit_cache_key,
    download_status_cache_key,
)
from ..caching.ttl_cache import TTLCache

DEFAULT_TIMEZONE = "America/Sao_Paulo"
DEFAULT_PLAN = "free"

logger = get_logger("downloads.download_status")

logger = get_logger("downloads.download_status")

PLAN_DOWNLOAD_LIMITS: Dict[str, int] = {
    "free": 1,
    "lite": 3,
    "pro": 10,
    "plus": 20,
    "ultra": 20,
}

PLAN_DISPLAY_NAMES: Dict[str, str] = {
    "free": "Free",
    "lite": "Lite",
    "pro": "Pro",
    "plus": "Plus",
    "ultra": "Ultra",
}


class DownloadStatus(BaseModel):
    """Today's download usage for one user."""
    current: int
    limit: int
    remaining: int
    plan: str
    allowed: bool


def _normalize_plan(plan: Optional[str]) -> str:
    return (plan or DEFAULT_PLAN).strip().lower() or DEFAULT_PLAN


def get_download_limit_by_plan(plan: Optional[str]) -> int:
    """Daily download allowance for a plan; unknown plans get the free tier."""
    return PLAN_DOWNLOAD_LIMITS.get(_normalize_plan(plan), PLAN_DOWNLOAD_LIMITS[DEFAULT_PLAN])


def format_plan_name(plan: Optional[str]) -> str:
    return PLAN_DISPLAY_NAMES.get(_normalize_plan(plan), PLAN_DISPLAY_NAMES[DEFAULT_PLAN])


def format_download_status(status: Optional[DownloadStatus]) -> str:
    if status is None:
        return "0 / 0 downloads today"
    return f"{status.current} / {status.limit} downloads today"


# Postgres trims trailing zeros from fractions and may emit "+00" offsets;
# both are normalized to the forms datetime.fromisoformat accepts on 3.9.
_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def _parse_timestamp(value: str) -> datetime:
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid timestamp: {value!r}")

    candidate = match.group("base")
    fraction = match.group("fraction")
    if fraction:
        candidate += "." + fraction[:6].ljust(6, "0")

    offset = match.group("offset")
    if offset == "Z":
        candidate += "+00:00"
    elif offset:
        candidate += f"{offset[:3]}:{offset[3:].lstrip(':') or '00'}"

    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        # Backend timestamps without an offset are UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def count_downloads_today(
    timestamps: Iterable[Optional[str]],
    tz_name: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None
) -> int:
    """Count timestamps that fall on today's date in ``tz_name``."""
    tz = ZoneInfo(tz_name)
    today = (now or datetime.now(tz)).astimezone(tz).date()

    count = 0
    for value in timestamps:
        if not value:
            continue
        try:
            parsed = _parse_timestamp(value)
        except ValueError:
            logger.warning("Skipping unparseable download timestamp", value=value)
            continue
        if parsed.astimezone(tz).date() == today:
            count += 1
    return count


def build_status(plan: Optional[str], current: int) -> DownloadStatus:
    limit = get_download_limit_by_plan(plan)
    return DownloadStatus(
        current=current,
        limit=limit,
        remaining=max(0, limit - current),
        plan=_normalize_plan(plan),
        allowed=current < limit
    )


class DownloadStatusService:
    """Computes, caches and updates users' daily download status."""

    def __init__(
        self,
        backend_client: BackendClient,
        cache: TTLCache,
        timezone: str = DEFAULT_TIMEZONE,
        cache_ttl: float = DOWNLOAD_STATUS_CACHE_TTL,
        clock: Optional[Callable[[], float]] = None
    ):
        self.backend_client = backend_client
        self.cache = cache
        self.timezone = timezone
        self.cache_ttl = cache_ttl
        self._clock = clock or time.time
        self.logger = get_logger("downloads.status_service")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), ZoneInfo(self.timezone))

    async def get_plan_limit(self, user_id: str, access_token: Optional[str] = None) -> Tuple[str, int]:
        """``(plan, daily limit)`` for the user, memoized like the status."""
        key = download_limit_cache_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        tier = await self.backend_client.get_subscription_tier(user_id, access_token=access_token)
        plan_limit = (_normalize_plan(tier), get_download_limit_by_plan(tier))
        self.cache.set(key, plan_limit, self.cache_ttl)
        return plan_limit

    async def compute_status(self, user_id: str, access_token: Optional[str] = None) -> DownloadStatus:
        """Fetch the user's plan and today's downloads from the backend."""
        plan, _ = await self.get_plan_limit(user_id, access_token=access_token)
        timestamps = await self.backend_client.list_download_timestamps(user_id, access_token=access_token)
        current = count_downloads_today(timestamps, self.timezone, now=self._now())
        status = build_status(plan, current)

        self.logger.debug(
            "Download status computed",
            user_id=user_id,
            plan=status.plan,
            current=status.current,
            limit=status.limit
        )
        return status

    async def get_status(
        self,
        user_id: str,
        force_refresh: bool = False,
        access_token: Optional[str] = None
    ) -> Tuple[DownloadStatus, bool]:
        """Return ``(status, served_from_cache)``."""
        key = download_status_cache_key(user_id)
        if force_refresh:
            self.invalidate(user_id)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, True

        status = await self.compute_status(user_id, access_token=access_token)
        self.cache.set(key, status, self.cache_ttl)
        return status, False

    def invalidate(self, user_id: str) -> None:
        """Drop everything cached for the user."""
        self.cache.delete(download_status_cache_key(user_id))
        self.cache.delete(download_limit_cache_key(user_id))

    async def can_download(self, user_id: str, access_token: Optional[str] = None) -> bool:
        status, _ = await self.get_status(user_id, access_token=access_token)
        return status.allowed

    async def register_download(
        self,
        user_id: str,
        resource_id: str,
        ip_address: str,
        user_agent: str,
        access_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a download if the user still has quota left today."""
        status, _ = await self.get_status(user_id, force_refresh=True, access_token=access_token)
        if not status.allowed:
            raise DownloadLimitError(
                f"Daily limit of {status.limit} downloads reached for the {format_plan_name(status.plan)} plan",
                details=status.model_dump()
            )

        result = await self.backend_client.register_download(
            user_id, resource_id, ip_address, user_agent, access_token=access_token
        )
        self.invalidate(user_id)
        refreshed, _ = await self.get_status(user_id, access_token=access_token)

        self.logger.info(
            "Download registered",
            user_id=user_id,
            resource_id=resource_id,
            success=bool(result.get("success", True)),
            remaining=refreshed.remaining
        )
        return {"registration": result, "status": refreshed}
