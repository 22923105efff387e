"""
Shared configuration management for the Menu Service.
"""

from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="MENU_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Storage
    postgres_dsn: str = "postgresql://localhost:5432/menu"
    postgres_min_pool_size: int = 2
    postgres_max_pool_size: int = 10
    postgres_command_timeout: float = 30.0

    # Identity provider. No safe production defaults: both must be supplied.
    auth0_domain: str = Field(
        default="",
        validation_alias=AliasChoices("AUTH0_DOMAIN", "MENU_AUTH0_DOMAIN", "auth0_domain")
    )
    auth0_audience: str = Field(
        default="",
        validation_alias=AliasChoices("AUTH0_AUDIENCE", "MENU_AUTH0_AUDIENCE", "auth0_audience")
    )
    jwks_cache_ttl: float = 0.0
    http_timeout: float = 5.0

    # HTTP
    cors_origins: str = "*"

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def missing_auth_settings(self) -> List[str]:
        """Names of identity-provider settings that are not configured."""
        missing = []
        if not self.auth0_domain:
            missing.append("AUTH0_DOMAIN")
        if not self.auth0_audience:
            missing.append("AUTH0_AUDIENCE")
        return missing


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
