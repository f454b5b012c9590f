"""
Domain helpers for the downloads service: request authentication and the
per-user daily download quota.
"""

from .auth_middleware import AuthMiddleware
from .download_status import (
    DownloadStatus,
    DownloadStatusService,
    PLAN_DOWNLOAD_LIMITS,
    build_status,
    count_downloads_today,
    format_download_status,
    format_plan_name,
    get_download_limit_by_plan,
)

__all__ = [
    "AuthMiddleware",
    "DownloadStatus",
    "DownloadStatusService",
    "PLAN_DOWNLOAD_LIMITS",
    "build_status",
    "count_downloads_today",
    "format_download_status",
    "format_plan_name",
    "get_download_limit_by_plan",
]
