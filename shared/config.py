"""
Shared configuration management for the Workforce Access Core.
"""

from enum import Enum
from typing import Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploymentMode(str, Enum):
    """Deployment mode controlling fail-fast behaviour for secrets."""
    PRODUCTION = "production"
    DEVELOPMENT = "development"


PRODUCTION_ENVS = {"prod", "production"}


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Persistence (empty DSN selects the in-memory document store)
    postgres_dsn: str = Field(default="")

    # Security
    jwks_url: str = Field(default="http://localhost:8080/realms/timeam/protocol/openid-connect/certs")
    jwt_audience: Optional[str] = Field(default=None)
    jwt_issuer: Optional[str] = Field(default=None)

    @property
    def deployment_mode(self) -> DeploymentMode:
        """Map the environment name onto a deployment mode."""
        if self.env.strip().lower() in PRODUCTION_ENVS:
            return DeploymentMode.PRODUCTION
        return DeploymentMode.DEVELOPMENT


class AccessCoreConfig(BaseConfig):
    """Configuration for the authorization and session verification core."""

    service_name: str = "authz"
    port: int = 8020
    host: str = "0.0.0.0"

    # MFA
    mfa_encryption_key: Optional[str] = Field(default=None)
    mfa_issuer: str = Field(default="TimeAM")
    totp_window: int = Field(default=2)

    # Tenancy
    sandbox_tenant_id: str = Field(default="dev-tenant")
    super_admin_uids: str = Field(default="")

    def super_admin_uid_set(self) -> Set[str]:
        """Parse the comma-separated super-admin uid list."""
        return {uid.strip() for uid in self.super_admin_uids.split(",") if uid.strip()}


def get_config(**overrides) -> AccessCoreConfig:
    """Get configuration for the access core service."""
    return AccessCoreConfig(**overrides)
