"""Configuration models for the ChartMuseum client and MCP server."""

from __future__ import annotations

from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

DEFAULT_BASE_URL = "http://localhost:8080/"
DEFAULT_USER_AGENT = "chartmuseum-mcp"
MEDIA_TYPE = "application/vnd.chartmuseum.v0+json"

HEADER_RATE_LIMIT = "RateLimit-Limit"
HEADER_RATE_RESET = "RateLimit-Reset"
HEADER_OTP = "X-ChartMuseum-OTP"


class AuthType(str, Enum):
    """Authentication modes understood by the transport."""

    NONE = "none"
    BASIC = "basic"


class McpToolNames(str, Enum):
    """MCP tool name constants."""

    LIST_CHARTS = "list_charts"
    LIST_VERSIONS = "list_chart_versions"
    GET_VERSION = "get_chart_version"
    CHART_EXISTS = "chart_exists"
    UPLOAD_CHART = "upload_chart"
    DELETE_VERSION = "delete_chart_version"
    DOWNLOAD_CHART = "download_chart"
    LATEST_VERSION = "latest_chart_version"
    REPOSITORY_INDEX = "repository_index"
    SERVER_HEALTH = "server_health"
    SERVER_INFO = "server_info"


class ClientConfig(BaseModel):
    """Immutable configuration for a ChartMuseum client.

    The base URL is normalized to always end with a slash so relative API
    paths resolve underneath it.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=DEFAULT_BASE_URL, description="ChartMuseum base URL")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    username: Optional[str] = Field(None, description="Basic auth username")
    password: Optional[SecretStr] = Field(None, description="Basic auth password")

    timeout: float = Field(default=30, gt=0, description="HTTP timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Maximum retry attempts")
    disable_retries: bool = Field(default=False, description="Never retry requests")

    # Backoff windows, in seconds
    rate_limit_wait_min: float = Field(default=1.0, ge=0)
    rate_limit_wait_max: float = Field(default=30.0, ge=0)
    rate_limit_jitter: float = Field(default=0.5, ge=0)
    retry_wait_min: float = Field(default=0.7, ge=0)
    retry_wait_max: float = Field(default=0.9, ge=0)

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("ChartMuseum base URL can not be blank")

        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"ChartMuseum base URL must be an absolute http(s) URL: {value!r}")

        if not value.endswith("/"):
            value += "/"
        return value

    @model_validator(mode="after")
    def _check_credentials(self) -> "ClientConfig":
        if bool(self.username) != bool(self.password and self.password.get_secret_value()):
            raise ValueError("username and password must be provided together")
        if self.rate_limit_wait_max < self.rate_limit_wait_min:
            raise ValueError("rate_limit_wait_max must not be lower than rate_limit_wait_min")
        if self.retry_wait_max < self.retry_wait_min:
            raise ValueError("retry_wait_max must not be lower than retry_wait_min")
        return self

    @property
    def auth_type(self) -> AuthType:
        """Authentication mode derived from the configured credentials."""
        if self.username:
            return AuthType.BASIC
        return AuthType.NONE


class ChartMuseumSettings(BaseSettings):
    """Environment driven settings for the MCP server."""

    model_config = SettingsConfigDict(
        env_prefix="CHARTMUSEUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Server
    url: str = Field(default=DEFAULT_BASE_URL, description="ChartMuseum base URL")
    username: Optional[str] = Field(None, description="Basic auth username")
    password: Optional[SecretStr] = Field(None, description="Basic auth password")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")

    # HTTP settings
    http_timeout: float = Field(default=30, gt=0, description="HTTP timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Maximum retry attempts")

    @property
    def client_config(self) -> ClientConfig:
        """Get the client configuration.

        Raises:
            ConfigurationError: If the settings do not form a valid client config
        """
        try:
            return ClientConfig(
                base_url=self.url,
                user_agent=self.user_agent,
                username=self.username,
                password=self.password,
                timeout=self.http_timeout,
                max_retries=self.max_retries,
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid ChartMuseum settings: {e}") from e
