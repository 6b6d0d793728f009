"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "hlsrelay",
    "environment": "dev",
    "proxy": {
        "public_url": "http://localhost:3000",
        "cors_allowed_origins": ["*"],
        "playlist_cache_seconds": 5,
        "client_ip_header": "X-Forwarded-For",
    },
    "rate_limit": {
        "window_seconds": 60,
        "max_requests": 100,
        "max_clients": 10_000,
        "peer_fallback": True,
    },
    "security": {
        "resolve_hostnames": True,
    },
    "upstream": {
        "timeout_seconds": 8.0,
        "user_agent": "Mozilla/5.0",
        "follow_redirects": True,
        "max_concurrency": 100,
        "max_playlist_bytes": 5 * 1024 * 1024,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
}
