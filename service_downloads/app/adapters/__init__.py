"""
Adapters for the hosted backend used by the downloads service.

- AuthClient: resolves session tokens to users
- BackendClient: profile/download reads and the register_download RPC
"""

from .auth_client import AuthClient
from .backend_client import BackendClient

__all__ = ["AuthClient", "BackendClient"]
