"""
Authentication middleware for the downloads service.
"""

from fastapi import Request
from typing import Dict, Any

from shared.logging import get_logger, set_user_context
from shared.errors import AuthenticationError
from ..adapters.auth_client import AuthClient


class AuthMiddleware:
    """Authenticates requests with a backend session token."""

    def __init__(self, auth_client: AuthClient):
        self.auth_client = auth_client
        self.logger = get_logger("downloads.auth_middleware")

    def _extract_token(self, request: Request) -> str:
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            raise AuthenticationError("Authorization header required")

        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Invalid authorization header format")
        return token.strip()

    async def authenticate_request(self, request: Request) -> Dict[str, Any]:
        """Resolve the caller and stash it on ``request.state.user_info``."""
        token = self._extract_token(request)

        try:
            user = await self.auth_client.get_user(token)
        except AuthenticationError as e:
            self.logger.warning("Authentication failed", error=str(e))
            raise

        user_info = {
            "user_id": user["id"],
            "email": user.get("email"),
            "token": token,
        }
        request.state.user_info = user_info
        set_user_context(user_id=user_info["user_id"])

        self.logger.debug("Request authenticated", user_id=user_info["user_id"])
        return user_info
