"""
Backend auth client for the downloads service.
"""

import httpx
from typing import Dict, Any, Optional

from shared.logging import get_logger
from shared.errors import AuthenticationError
from shared.retry import retry_on_exception, RetryConfig, RetryError


class AuthClient:
    """Resolves a session token to the backend user it belongs to."""

    def __init__(self, backend_url: str, api_key: str = "", timeout: float = 10.0,
                 retry_config: Optional[RetryConfig] = None):
        self.backend_url = backend_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.logger = get_logger("downloads.auth_client")
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5)

    @retry_on_exception((httpx.TransportError,))
    async def _fetch_user(self, token: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(
                f"{self.backend_url}/auth/v1/user",
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {token}",
                }
            )

    async def get_user(self, token: str) -> Dict[str, Any]:
        """Return the backend user record for ``token``."""
        try:
            response = await self._fetch_user(token)
        except (RetryError, httpx.HTTPError) as e:
            self.logger.error("Auth service HTTP error", error=str(e))
            raise AuthenticationError(
                "Auth service unavailable",
                details={"http_error": str(e)}
            ) from e

        if response.status_code == 200:
            user = response.json()
            if not user.get("id"):
                raise AuthenticationError("Session has no user attached")
            return user

        if response.status_code in (401, 403):
            self.logger.warning("Token validation failed", status_code=response.status_code)
            raise AuthenticationError(
                "Invalid or expired session",
                details={"status_code": response.status_code}
            )

        raise AuthenticationError(
            f"Auth service error: {response.status_code}",
            details={"status_code": response.status_code}
        )
