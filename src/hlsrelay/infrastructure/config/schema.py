"""Pydantic configuration models with validation."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]


def _split_origins(value: Any) -> Any:
    """Accept a list or a comma-separated string (``ALLOWED_ORIGINS`` style)."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (proxy/rate_limit/security/upstream/logging).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    # General
    app_name: str = Field(default="hlsrelay", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # Proxy surface (YAML section: proxy.*)
    public_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices(
            "public_url",
            AliasPath("proxy", "public_url"),
        ),
        description="Public base URL used when building rewritten playlist links.",
    )
    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        validation_alias=AliasChoices(
            "cors_allowed_origins",
            AliasPath("proxy", "cors_allowed_origins"),
        ),
        description="CORS allow-list. '*' allows every origin.",
    )
    playlist_cache_seconds: int = Field(
        default=5,
        validation_alias=AliasChoices(
            "playlist_cache_seconds",
            AliasPath("proxy", "playlist_cache_seconds"),
        ),
        description="max-age for rewritten playlists (live playlists change fast).",
    )
    client_ip_header: str = Field(
        default="X-Forwarded-For",
        validation_alias=AliasChoices(
            "client_ip_header",
            AliasPath("proxy", "client_ip_header"),
        ),
        description="Header carrying the forwarded client address.",
    )

    # Rate limiting (YAML section: rate_limit.*)
    rate_limit_window_seconds: float = Field(
        default=60.0,
        validation_alias=AliasChoices(
            "rate_limit_window_seconds",
            AliasPath("rate_limit", "window_seconds"),
        ),
        description="Sliding window length in seconds.",
    )
    rate_limit_max_requests: int = Field(
        default=100,
        validation_alias=AliasChoices(
            "rate_limit_max_requests",
            AliasPath("rate_limit", "max_requests"),
        ),
        description="Max requests per client per window. 0 = unlimited.",
    )
    rate_limit_max_clients: int = Field(
        default=10_000,
        validation_alias=AliasChoices(
            "rate_limit_max_clients",
            AliasPath("rate_limit", "max_clients"),
        ),
        description="Max tracked client identities (LRU eviction beyond).",
    )
    rate_limit_peer_fallback: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "rate_limit_peer_fallback",
            AliasPath("rate_limit", "peer_fallback"),
        ),
        description=(
            "Key clients without a forwarded address by socket peer address "
            "instead of one shared 'unknown' bucket."
        ),
    )

    # SSRF guard (YAML section: security.*)
    resolve_hostnames: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "resolve_hostnames",
            AliasPath("security", "resolve_hostnames"),
        ),
        description="Resolve target hosts and reject internal addresses.",
    )

    # Upstream HTTP (YAML section: upstream.*)
    upstream_timeout_seconds: float = Field(
        default=8.0,
        validation_alias=AliasChoices(
            "upstream_timeout_seconds",
            AliasPath("upstream", "timeout_seconds"),
        ),
        description="Timeout for origin requests in seconds.",
    )
    upstream_user_agent: str = Field(
        default="Mozilla/5.0",
        validation_alias=AliasChoices(
            "upstream_user_agent",
            AliasPath("upstream", "user_agent"),
        ),
        description="User-Agent sent when the client did not send one.",
    )
    upstream_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "upstream_follow_redirects",
            AliasPath("upstream", "follow_redirects"),
        ),
        description="Follow origin redirects (each hop re-checked by the guard).",
    )
    upstream_max_concurrency: int = Field(
        default=100,
        validation_alias=AliasChoices(
            "upstream_max_concurrency",
            AliasPath("upstream", "max_concurrency"),
        ),
        description="Max open origin connections (held while a segment streams).",
    )
    max_playlist_bytes: int = Field(
        default=5 * 1024 * 1024,
        validation_alias=AliasChoices(
            "max_playlist_bytes",
            AliasPath("upstream", "max_playlist_bytes"),
        ),
        description="Largest playlist body the proxy will buffer.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _validate_origins(cls, v: Any) -> Any:
        return _split_origins(v)

    @field_validator("public_url")
    @classmethod
    def _validate_public_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("public_url must be an absolute http(s) URL")
        return v

    @field_validator("rate_limit_window_seconds", "upstream_timeout_seconds")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("rate_limit_max_requests", "playlist_cache_seconds")
    @classmethod
    def _validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator(
        "rate_limit_max_clients", "upstream_max_concurrency", "max_playlist_bytes"
    )
    @classmethod
    def _validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    @property
    def proxy_base(self) -> str:
        """Base of the proxy API as seen by clients."""
        return f"{self.public_url}/api"

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "proxy": {
                "public_url": self.public_url,
                "cors_allowed_origins": list(self.cors_allowed_origins),
                "playlist_cache_seconds": self.playlist_cache_seconds,
                "client_ip_header": self.client_ip_header,
            },
            "rate_limit": {
                "window_seconds": self.rate_limit_window_seconds,
                "max_requests": self.rate_limit_max_requests,
                "max_clients": self.rate_limit_max_clients,
                "peer_fallback": self.rate_limit_peer_fallback,
            },
            "security": {"resolve_hostnames": self.resolve_hostnames},
            "upstream": {
                "timeout_seconds": self.upstream_timeout_seconds,
                "user_agent": self.upstream_user_agent,
                "follow_redirects": self.upstream_follow_redirects,
                "max_concurrency": self.upstream_max_concurrency,
                "max_playlist_bytes": self.max_playlist_bytes,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read HLSRELAY_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - HLSRELAY_PUBLIC_URL
    - HLSRELAY_CORS_ALLOWED_ORIGINS (comma-separated)
    - HLSRELAY_RATE_LIMIT_WINDOW_SECONDS
    - HLSRELAY_RATE_LIMIT_MAX_REQUESTS
    - HLSRELAY_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="HLSRELAY_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    public_url: Optional[str] = None
    # Plain string so a comma-separated value is not parsed as JSON.
    cors_allowed_origins: Optional[str] = None
    playlist_cache_seconds: Optional[int] = None
    client_ip_header: Optional[str] = None

    rate_limit_window_seconds: Optional[float] = None
    rate_limit_max_requests: Optional[int] = None
    rate_limit_max_clients: Optional[int] = None
    rate_limit_peer_fallback: Optional[bool] = None

    resolve_hostnames: Optional[bool] = None

    upstream_timeout_seconds: Optional[float] = None
    upstream_user_agent: Optional[str] = None
    upstream_follow_redirects: Optional[bool] = None
    upstream_max_concurrency: Optional[int] = None
    max_playlist_bytes: Optional[int] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
