"""
Shared configuration management for the Asset Marketplace access layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ASSETS_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend (auth + relational storage + RPC)
    backend_url: str = Field(default="http://localhost:54321")
    backend_anon_key: str = Field(default="")
    backend_timeout_seconds: float = Field(default=10.0)

    # Download quota bookkeeping
    download_timezone: str = Field(default="America/Sao_Paulo")
    download_status_cache_ttl_seconds: float = Field(default=30.0)

    # Rate limiting (fixed windows)
    download_limit_per_minute: int = Field(default=20)
    download_minute_window_seconds: float = Field(default=60.0)
    download_limit_per_hour: int = Field(default=100)
    download_hour_window_seconds: float = Field(default=3600.0)

    # Expired-entry sweep for the in-process stores
    sweep_interval_seconds: float = Field(default=60.0)

    # Observability
    metrics_port: Optional[int] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
