"""Configuration settings for the MCP OAuth broker using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oauth_broker.core.constants import (
    AUTH_CODE_TTL_SECONDS_DEFAULT,
    STATE_TTL_SECONDS_DEFAULT,
    UPSTREAM_TIMEOUT_SECONDS_DEFAULT,
)

logger = logging.getLogger(__name__)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="MCP_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # Server Settings
    # ========================================
    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=8051,
        ge=1024,
        le=65535,
        description="Server port number",
    )

    public_base_url: str | None = Field(
        default=None,
        description="Externally visible origin of this server (issuer and resource origin)",
    )

    callback_path: str = Field(
        default="/callback",
        description="Path of the fixed callback registered with the upstream provider",
    )

    mcp_path: str = Field(
        default="/mcp",
        description="Path of the bearer-protected MCP endpoint",
    )

    # ========================================
    # Upstream Provider Settings
    # ========================================
    upstream_client_id: str | None = Field(
        default=None,
        description="Client ID registered with the upstream identity provider",
    )

    upstream_client_secret: str | None = Field(
        default=None,
        description="Client secret registered with the upstream identity provider",
    )

    upstream_authorization_endpoint: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        description="Upstream authorization endpoint",
    )

    upstream_token_endpoint: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Upstream token endpoint",
    )

    upstream_userinfo_endpoint: str = Field(
        default="https://www.googleapis.com/oauth2/v2/userinfo",
        description="Upstream userinfo endpoint used to verify bearer tokens",
    )

    upstream_scopes: str = Field(
        default="openid email profile",
        description="Space-separated scopes requested from the upstream provider",
    )

    upstream_access_type: str | None = Field(
        default="offline",
        description="Upstream access_type parameter (empty to omit)",
    )

    upstream_prompt: str | None = Field(
        default="consent",
        description="Upstream prompt parameter (empty to omit)",
    )

    upstream_timeout: float = Field(
        default=UPSTREAM_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        le=120,
        description="Timeout in seconds for upstream token and userinfo requests",
    )

    # ========================================
    # Broker Code & State Settings
    # ========================================
    auth_code_ttl_seconds: int = Field(
        default=AUTH_CODE_TTL_SECONDS_DEFAULT,
        ge=1,
        le=3600,
        description="Lifetime of broker-issued authorization codes",
    )

    state_secret_key: str = Field(
        default="change-me-in-production",
        description="HMAC key used to sign the state sent to the upstream provider",
    )

    state_ttl_seconds: int = Field(
        default=STATE_TTL_SECONDS_DEFAULT,
        ge=1,
        le=3600,
        description="Lifetime of an encoded state blob",
    )

    require_pkce: bool = Field(
        default=False,
        description="Reject authorization requests without a code_challenge",
    )

    defer_upstream_exchange: bool = Field(
        default=False,
        description="Exchange the upstream code at /token instead of at the callback",
    )

    store_sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Interval between purges of expired broker codes",
    )

    # ========================================
    # Redirect URI Table
    # ========================================
    loopback_fixed_redirect_uris: str = Field(
        default="http://localhost:6274/oauth/callback",
        description="Comma-separated exact loopback redirect URIs (token payload delivery)",
    )

    browser_redirect_uris: str = Field(
        default=(
            "https://vscode.dev/redirect,"
            "https://insiders.vscode.dev/redirect,"
            "https://claude.ai/api/mcp/auth_callback"
        ),
        description="Comma-separated exact browser redirect URIs (code forwarding)",
    )

    loopback_callback_paths: str = Field(
        default="/callback,/oauth/callback",
        description="Comma-separated fixed paths accepted on loopback hosts with any port",
    )

    # ========================================
    # Discovery & CORS Settings
    # ========================================
    scopes_supported: str = Field(
        default="openid,email,profile",
        description="Comma-separated scopes published in discovery metadata",
    )

    cors_allow_origins: str = Field(
        default="*",
        description="Comma-separated origins allowed by CORS",
    )

    # ========================================
    # Directly-Tested Flow
    # ========================================
    enable_test_flow: bool = Field(
        default=False,
        description="Expose /test-oauth to start a flow that returns tokens directly",
    )

    test_flow_redirect_uri: str = Field(
        default="http://localhost:6274/oauth/callback",
        description="Redirect URI recorded in the state of directly-tested flows",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("public_base_url", mode="before")
    @classmethod
    def set_public_base_url(cls, v: str | None, info: Any) -> str:
        """Set public base URL default from host and port if not provided."""
        if v:
            return v.rstrip("/")
        host = info.data.get("host", "0.0.0.0")
        port = info.data.get("port", 8051)
        if host == "0.0.0.0":
            host = "localhost"
        return f"http://{host}:{port}"

    @field_validator("callback_path", "mcp_path")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        """Paths are always absolute."""
        return v if v.startswith("/") else f"/{v}"

    # ========================================
    # Helper Methods
    # ========================================
    @property
    def issuer(self) -> str:
        """Issuer URL published in discovery metadata."""
        return self.public_base_url or ""

    @property
    def callback_uri(self) -> str:
        """Fixed callback URI registered with the upstream provider."""
        return f"{self.issuer}{self.callback_path}"

    def has_upstream_credentials(self) -> bool:
        """Check if upstream client credentials are configured."""
        return bool(self.upstream_client_id and self.upstream_client_secret)

    def get_loopback_fixed_redirect_uris_list(self) -> list[str]:
        return _split_csv(self.loopback_fixed_redirect_uris)

    def get_browser_redirect_uris_list(self) -> list[str]:
        return _split_csv(self.browser_redirect_uris)

    def get_loopback_callback_paths_list(self) -> list[str]:
        return _split_csv(self.loopback_callback_paths)

    def get_scopes_supported_list(self) -> list[str]:
        return _split_csv(self.scopes_supported)

    def get_cors_allow_origins_list(self) -> list[str]:
        return _split_csv(self.cors_allow_origins)

    def get_upstream_extra_params(self) -> dict[str, str]:
        """Provider-specific authorization parameters (Google: access_type, prompt)."""
        params = {}
        if self.upstream_access_type:
            params["access_type"] = self.upstream_access_type
        if self.upstream_prompt:
            params["prompt"] = self.upstream_prompt
        return params

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary (safe version without secrets)."""
        return {
            "debug": self.debug,
            "host": self.host,
            "port": self.port,
            "issuer": self.issuer,
            "callback_uri": self.callback_uri,
            "mcp_path": self.mcp_path,
            "has_upstream_credentials": self.has_upstream_credentials(),
            "upstream_authorization_endpoint": self.upstream_authorization_endpoint,
            "upstream_token_endpoint": self.upstream_token_endpoint,
            "upstream_timeout": self.upstream_timeout,
            "auth_code_ttl_seconds": self.auth_code_ttl_seconds,
            "state_ttl_seconds": self.state_ttl_seconds,
            "require_pkce": self.require_pkce,
            "defer_upstream_exchange": self.defer_upstream_exchange,
            "loopback_fixed_redirect_uris": self.get_loopback_fixed_redirect_uris_list(),
            "browser_redirect_uris": self.get_browser_redirect_uris_list(),
            "loopback_callback_paths": self.get_loopback_callback_paths_list(),
            "enable_test_flow": self.enable_test_flow,
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("Issuer: %s", _settings_instance.issuer)
        if not _settings_instance.has_upstream_credentials():
            logger.warning(
                "UPSTREAM_CLIENT_ID / UPSTREAM_CLIENT_SECRET are missing. "
                "Upstream token exchange will fail.",
            )
        if _settings_instance.state_secret_key == "change-me-in-production":
            logger.warning("STATE_SECRET_KEY is using the default value.")
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
