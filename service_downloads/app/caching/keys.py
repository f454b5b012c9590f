"""
Cache key shapes and lifetimes used by the download endpoints.
"""

DOWNLOAD_STATUS_PREFIX = "download_status:"
DOWNLOAD_LIMIT_PREFIX = "download_limit:"

# Short enough to follow new downloads, long enough to absorb UI polling.
DOWNLOAD_STATUS_CACHE_TTL = 30.0


def download_status_cache_key(user_id: str) -> str:
    return f"{DOWNLOAD_STATUS_PREFIX}{user_id}"


def download_limit_cache_key(user_id: str) -> str:
    return f"{DOWNLOAD_LIMIT_PREFIX}{user_id}"
