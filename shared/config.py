"""
Shared configuration management for the RequestKit rules engine.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RESOURCE_TYPES = ["main_frame", "sub_frame", "xmlhttprequest", "other"]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="RULES_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Enforcement
    rules_enabled: bool = Field(default=True)
    max_rules: int = Field(default=100, ge=1)
    sort_by_priority: bool = Field(default=False)
    default_resource_types: List[str] = Field(default_factory=lambda: list(DEFAULT_RESOURCE_TYPES))

    # Variable resolution
    resolution_max_passes: int = Field(default=2, ge=1)
    resolution_cache_ttl_seconds: int = Field(default=60, ge=0)
    resolution_cache_max_entries: int = Field(default=1024, ge=1)

    # Diagnostics
    max_tracked_rules: int = Field(default=1000, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
