"""
Fixed-window rate limiter for the downloads service.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from shared.logging import get_logger
from shared.periodic import PeriodicTask


@dataclass
class RateLimitEntry:
    """Requests seen in the current window and when that window ends."""
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitPolicy:
    """A single window: at most ``max_requests`` per ``window_seconds``."""
    name: str
    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check.

    ``retry_after`` (whole seconds) is only set on rejections.
    """
    allowed: bool
    remaining: int
    reset_time: float
    limit: int
    retry_after: Optional[int] = None
    tier: Optional[str] = None

    def to_headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_time))),
        }
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_time": self.reset_time,
            "limit": self.limit,
        }
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        if self.tier is not None:
            payload["tier"] = self.tier
        return payload


# 20 requests per minute and 100 per hour per client IP.
DOWNLOAD_RATE_LIMITS: List[RateLimitPolicy] = [
    RateLimitPolicy(name="minute", max_requests=20, window_seconds=60.0),
    RateLimitPolicy(name="hour", max_requests=100, window_seconds=3600.0),
]


class FixedWindowRateLimiter:
    """Counts requests per identifier in fixed, non-overlapping windows.

    A window opens on the first request for an identifier and lasts
    ``window_seconds``; requests after ``max_requests`` are rejected until
    it closes. Rejections do not touch the counter, so sustained overload
    cannot push the window end forward. Two back-to-back windows can admit
    up to twice the limit around the boundary.

    Counters live in this process only; N workers enforce N times the limit.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, name: str = "rate_limiter"):
        self.name = name
        self.logger = get_logger(f"downloads.{name}")
        self._clock = clock or time.time
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[PeriodicTask] = None

    def check_rate_limit(self, identifier: str, max_requests: int, window_seconds: float) -> RateLimitResult:
        """Count a request for ``identifier`` and report whether it may proceed."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(identifier)

            if entry is None or now >= entry.reset_time:
                entry = RateLimitEntry(count=1, reset_time=now + window_seconds)
                self._store[identifier] = entry
                return RateLimitResult(
                    allowed=True,
                    remaining=max_requests - 1,
                    reset_time=entry.reset_time,
                    limit=max_requests
                )

            if entry.count >= max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=entry.reset_time,
                    limit=max_requests,
                    retry_after=math.ceil(entry.reset_time - now)
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=max_requests - entry.count,
                reset_time=entry.reset_time,
                limit=max_requests
            )

    def check_policy(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Run ``check_rate_limit`` for one policy, keyed ``<identifier>:<policy>``."""
        result = self.check_rate_limit(
            f"{identifier}:{policy.name}", policy.max_requests, policy.window_seconds
        )
        return RateLimitResult(
            allowed=result.allowed,
            remaining=result.remaining,
            reset_time=result.reset_time,
            limit=result.limit,
            retry_after=result.retry_after,
            tier=policy.name
        )

    def get_entry(self, identifier: str) -> Optional[RateLimitEntry]:
        """Return a copy of the live entry for ``identifier``, if any."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(identifier)
            if entry is None or now >= entry.reset_time:
                return None
            return RateLimitEntry(count=entry.count, reset_time=entry.reset_time)

    def reset(self, identifier: str) -> bool:
        """Forget the counter for ``identifier``."""
        with self._lock:
            removed = self._store.pop(identifier, None) is not None

        if removed:
            self.logger.info("Rate limit reset", identifier=identifier)
        return removed

    def purge_expired(self) -> int:
        """Drop every entry whose window has closed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if now >= entry.reset_time]
            for key in expired:
                del self._store[key]

        if expired:
            self.logger.debug("Purged expired rate limit windows", count=len(expired))
        return len(expired)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def get_stats(self) -> Dict[str, Any]:
        """Global rate limiting statistics."""
        with self._lock:
            total_keys = len(self._store)
            total_requests = sum(entry.count for entry in self._store.values())

        return {
            "tracked_windows": total_keys,
            "total_requests": total_requests,
            "average_requests_per_window": total_requests / max(1, total_keys),
            "sweeper_running": bool(self._sweeper and self._sweeper.running),
        }

    async def start(self, interval_seconds: float = 60.0,
                    on_sweep: Optional[Callable[[int], None]] = None):
        """Start the periodic sweep of closed windows."""
        if self._sweeper and self._sweeper.running:
            return

        def _sweep():
            evicted = self.purge_expired()
            if on_sweep:
                on_sweep(evicted)
            return evicted

        self._sweeper = PeriodicTask(self.name, interval_seconds, _sweep)
        await self._sweeper.start()

    async def stop(self):
        if self._sweeper:
            await self._sweeper.stop()
            self._sweeper = None


class TieredRateLimiter:
    """Applies several windows in order; every one must admit the request.

    Evaluation stops at the first rejecting tier and its result is returned
    as-is, so later tiers are not charged for a request that never ran.
    When all tiers admit, the result reports the smallest ``remaining`` and
    the earliest ``reset_time`` across tiers.
    """

    def __init__(self, limiter: FixedWindowRateLimiter, policies: Sequence[RateLimitPolicy]):
        if not policies:
            raise ValueError("TieredRateLimiter needs at least one policy")
        self.limiter = limiter
        self.policies = list(policies)

    def check(self, identifier: str) -> RateLimitResult:
        results: List[RateLimitResult] = []
        for policy in self.policies:
            result = self.limiter.check_policy(identifier, policy)
            if not result.allowed:
                return result
            results.append(result)

        tightest = min(results, key=lambda r: r.remaining)
        return RateLimitResult(
            allowed=True,
            remaining=tightest.remaining,
            reset_time=min(r.reset_time for r in results),
            limit=tightest.limit,
            tier=tightest.tier
        )

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"tier": p.name, "max_requests": p.max_requests, "window_seconds": p.window_seconds}
            for p in self.policies
        ]


def check_download_rate_limit(limiter: FixedWindowRateLimiter, ip: str) -> RateLimitResult:
    """Per-minute then per-hour download throttle for a client IP."""
    return TieredRateLimiter(limiter, DOWNLOAD_RATE_LIMITS).check(ip)
