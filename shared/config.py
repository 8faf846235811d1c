"""
Shared configuration management for the clinic scheduling service.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SCHEDULING_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    postgres_dsn: str = Field(default="postgres://localhost:5432/scheduling")
    postgres_min_pool_size: int = Field(default=2)
    postgres_max_pool_size: int = Field(default=10)

    # Upstream reads
    upstream_retry_attempts: int = Field(default=3)
    upstream_retry_base_delay: float = Field(default=0.2)
    upstream_retry_max_delay: float = Field(default=2.0)

    # Scheduling
    timezone: str = Field(default="Europe/Berlin")
    slot_duration_minutes: int = Field(default=5)
    max_tree_depth: int = Field(default=20)
    blocked_reason_fallback: str = Field(default="This time slot is blocked by a rule.")


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
