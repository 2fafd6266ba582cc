"""Pydantic configuration schema for graphsession.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from graphsession.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "[::1]", "::1"}


class AuthConfig(BaseModel):
    """Azure AD / Entra ID application registration."""

    client_id: str = Field(description="Application (client) ID")
    tenant_id: str = Field(
        default="common",
        description="Directory (tenant) ID, 'common', 'organizations' or 'consumers'",
    )
    redirect_uri: str | None = Field(
        default=None,
        description="Loopback redirect URI registered for the app (e.g. http://localhost:8400)",
    )
    scopes: list[str] = Field(
        default=["User.Read", "Files.ReadWrite"],
        description="Microsoft Graph API permission scopes",
    )
    interactive_timeout_seconds: int | None = Field(
        default=None,
        ge=10,
        description="Give up on the browser sign-in after this many seconds (None = wait)",
    )
    device_code_timeout_seconds: int | None = Field(
        default=None,
        ge=10,
        description="Stop polling before the device code's own expiry (None = protocol expiry)",
    )

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("client_id cannot be empty")
        return v.strip()

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: list[str]) -> list[str]:
        scopes = [s.strip() for s in v if s and s.strip()]
        if not scopes:
            raise ValueError("at least one scope is required")
        return scopes

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        parsed = urlparse(v.strip())
        if parsed.scheme != "http" or parsed.hostname not in LOOPBACK_HOSTS:
            raise ValueError("redirect_uri must be a loopback http URI (http://localhost[:port])")
        return v.strip()

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


class TokenCacheConfig(BaseModel):
    """Where and how the MSAL token cache is persisted."""

    directory: str = Field(
        default="data/token",
        description="Directory holding the token cache file",
    )
    file_name: str = Field(
        default="msal_token_cache.bin",
        description="Token cache file name",
    )
    protection: Literal["keyring", "fernet", "plaintext"] = Field(
        default="keyring",
        description="At-rest protection: OS keyring key, explicit Fernet key, or none",
    )
    keyring_service: str = Field(
        default="graphsession",
        description="Keyring service name under which the cache key is stored",
    )
    key_env_var: str = Field(
        default="GRAPHSESSION_CACHE_KEY",
        description="Environment variable holding the Fernet key for 'fernet' protection",
    )

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        """Ensure cache directory doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache directory cannot be empty")
        if ".." in Path(v).parts:
            raise ValueError("Token cache directory cannot contain '..' (path traversal)")
        return v

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        if not v or not v.strip() or Path(v).name != v:
            raise ValueError("Token cache file name must be a bare file name")
        return v

    @property
    def path(self) -> Path:
        return Path(self.directory) / self.file_name


class GraphConfig(BaseModel):
    """Microsoft Graph HTTP client settings."""

    base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Graph API root",
    )
    max_retries: int = Field(default=3, ge=0, le=10)
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)


class AppConfig(BaseModel):
    """Root configuration model."""

    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION, ge=1)
    auth: AuthConfig
    token_cache: TokenCacheConfig = Field(default_factory=TokenCacheConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
