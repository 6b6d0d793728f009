"""Shared test fixtures for hlsrelay test suite."""

from __future__ import annotations

import pytest

from hlsrelay.infrastructure.common.rate_limiter import SlidingWindowRateLimiter
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.hls.playlist_rewriter import PlaylistRewriter
from hlsrelay.infrastructure.security.origin_guard import OriginGuard

PUBLIC_URL = "http://proxy.test"
PROXY_BASE = f"{PUBLIC_URL}/api"

# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def app_config() -> AppConfig:
    """Test config: no DNS resolution, small rate-limit budget."""
    return AppConfig(
        environment="test",
        public_url=PUBLIC_URL,
        resolve_hostnames=False,
        rate_limit_window_seconds=60,
        rate_limit_max_requests=100,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def rewriter() -> PlaylistRewriter:
    return PlaylistRewriter(PROXY_BASE)


@pytest.fixture()
def rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(window_seconds=60, max_requests=3)


@pytest.fixture()
def origin_guard() -> OriginGuard:
    """Literal-only guard (no DNS in unit tests)."""
    return OriginGuard(resolve_hostnames=False)
