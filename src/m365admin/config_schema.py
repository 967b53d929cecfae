"""Pydantic configuration schema for the Microsoft 365 admin helpers.

This module defines the configuration schema that mirrors config.yaml structure.
Configuration is validated once at startup and is immutable afterwards.

Usage:
    from m365admin.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

# Scopes the Teams device inventory needs on the active session
TEAMS_DEVICE_SCOPES = ["TeamworkDevice.Read.All", "User.Read.All"]

# teamwork/devices is only published on beta
GRAPH_BETA_URL = "https://graph.microsoft.com/beta"
GRAPH_V1_URL = "https://graph.microsoft.com/v1.0"
FEDERATION_METADATA_URL = "https://accounts.accesscontrol.windows.net/{domain}/metadata/json/1"

# Graph accepts at most 20 sub-requests per $batch and a device adds up to
# 5 secondary lookups before the queue is checked, so the flush threshold
# cannot go above 15.
MAX_FLUSH_THRESHOLD = 15


class AuthConfig(BaseModel):
    """Entra ID authentication configuration."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(description="Entra ID Application (client) ID")
    tenant_id: str = Field(
        default="organizations",
        description="Entra ID Directory (tenant) ID or 'organizations'",
    )
    scopes: list[str] = Field(
        default=list(TEAMS_DEVICE_SCOPES),
        description="Microsoft Graph API permission scopes requested at sign-in",
    )
    token_cache_path: str = Field(
        default="data/token_cache.json",
        description="Path to MSAL token cache file",
    )

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        """Ensure client ID is not blank."""
        if not v or not v.strip():
            raise ValueError("Client ID cannot be empty")
        return v.strip()

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str) -> str:
        """Ensure token cache path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache path cannot be empty")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v


class GraphConfig(BaseModel):
    """Microsoft Graph endpoint and batching configuration."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(
        default=GRAPH_BETA_URL,
        description="Graph base URL used for $batch and teamwork device queries",
    )
    users_base_url: str = Field(
        default=GRAPH_V1_URL,
        description="Graph base URL used for direct user lookups",
    )
    batch_flush_threshold: int = Field(
        default=MAX_FLUSH_THRESHOLD,
        ge=1,
        le=MAX_FLUSH_THRESHOLD,
        description="Flush queued secondary lookups once more than this many are pending",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request timeout (seconds)",
    )

    @field_validator("base_url", "users_base_url")
    @classmethod
    def validate_https(cls, v: str) -> str:
        """Graph endpoints must be HTTPS."""
        if not v.startswith("https://"):
            raise ValueError("Graph URLs must start with https://")
        return v.rstrip("/")


class DomainsConfig(BaseModel):
    """Tenant domain lookup configuration."""

    model_config = ConfigDict(frozen=True)

    metadata_url_template: str = Field(
        default=FEDERATION_METADATA_URL,
        description="Federation metadata URL, with a {domain} placeholder",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Request timeout (seconds)",
    )

    @field_validator("metadata_url_template")
    @classmethod
    def validate_placeholder(cls, v: str) -> str:
        """The template must contain the {domain} placeholder."""
        if "{domain}" not in v:
            raise ValueError("metadata_url_template must contain '{domain}'")
        return v


class AppConfig(BaseModel):
    """Root configuration schema.

    If validation fails on startup, the CLI exits with a clear error.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    auth: AuthConfig
    graph: GraphConfig = Field(default_factory=GraphConfig)
    domains: DomainsConfig = Field(default_factory=DomainsConfig)
