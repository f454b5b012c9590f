"""
Client for the hosted backend's REST and RPC endpoints.
"""

import httpx
from typing import Any, Dict, List, Optional

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception


class BackendClient:
    """Reads profiles and downloads, and registers new downloads.

    Transport failures are retried with backoff; transport failures and 5xx
    responses feed a circuit breaker. Every failure surfaces as
    ``ExternalServiceError``.
    """

    def __init__(
        self,
        backend_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.backend_url = backend_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.logger = get_logger("downloads.backend_client")
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="backend",
            failure_threshold=5,
            recovery_timeout=30.0
        )

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Accept": "application/json",
        }

    @retry_on_exception((httpx.TransportError,))
    async def _send(self, method: str, path: str, *, access_token: Optional[str] = None,
                    params: Optional[Dict[str, str]] = None,
                    json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(
                method,
                f"{self.backend_url}{path}",
                params=params,
                json=json,
                headers=self._headers(access_token)
            )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        async def _call() -> httpx.Response:
            response = await self._send(method, path, **kwargs)
            if response.status_code >= 500:
                raise ExternalServiceError(
                    "backend",
                    f"HTTP {response.status_code}",
                    details={"status_code": response.status_code, "path": path}
                )
            return response

        try:
            response = await self.circuit_breaker.call(_call)
        except CircuitBreakerOpenException as e:
            self.logger.warning("Backend circuit open", path=path)
            raise ExternalServiceError("backend", "temporarily unavailable") from e
        except RetryError as e:
            self.logger.error("Backend unreachable", path=path, error=str(e.last_exception))
            raise ExternalServiceError(
                "backend",
                "unreachable",
                details={"error": str(e.last_exception), "attempts": e.attempts}
            ) from e

        if response.status_code >= 400:
            self.logger.warning("Backend rejected request", path=path, status_code=response.status_code)
            raise ExternalServiceError(
                "backend",
                f"HTTP {response.status_code}",
                details={"status_code": response.status_code, "path": path}
            )

        if not response.content:
            return None
        return response.json()

    async def get_subscription_tier(self, user_id: str, access_token: Optional[str] = None) -> Optional[str]:
        """Subscription tier stored on the user's profile (``None`` if unset)."""
        rows = await self._request(
            "GET",
            "/rest/v1/profiles",
            access_token=access_token,
            params={"id": f"eq.{user_id}", "select": "subscription_tier", "limit": "1"}
        )
        if not rows:
            raise ExternalServiceError("backend", "Profile not found", details={"user_id": user_id})
        return rows[0].get("subscription_tier")

    async def list_download_timestamps(self, user_id: str, access_token: Optional[str] = None) -> List[str]:
        """``created_at`` of every download recorded for the user."""
        rows = await self._request(
            "GET",
            "/rest/v1/downloads",
            access_token=access_token,
            params={"user_id": f"eq.{user_id}", "select": "created_at"}
        )
        return [row.get("created_at") for row in rows or []]

    async def register_download(
        self,
        user_id: str,
        resource_id: str,
        ip_address: str,
        user_agent: str,
        access_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a download through the ``register_download`` RPC."""
        result = await self._request(
            "POST",
            "/rest/v1/rpc/register_download",
            access_token=access_token,
            json={
                "p_user_id": user_id,
                "p_resource_id": resource_id,
                "p_ip_address": ip_address,
                "p_user_agent": user_agent,
            }
        )
        # The RPC returns a set; callers only care about the first row.
        if isinstance(result, list):
            result = result[0] if result else {}
        return result or {}
