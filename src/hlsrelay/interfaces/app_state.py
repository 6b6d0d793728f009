"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

import httpx
from starlette.datastructures import State

from hlsrelay.application.use_cases.hls_proxy import HlsProxyUseCase
from hlsrelay.infrastructure.common.rate_limiter import SlidingWindowRateLimiter
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.hls.playlist_rewriter import PlaylistRewriter
from hlsrelay.infrastructure.hls.upstream import HttpxUpstreamFetcher
from hlsrelay.infrastructure.security.origin_guard import OriginGuard


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    http_client: httpx.AsyncClient
    rate_limiter: SlidingWindowRateLimiter
    origin_guard: OriginGuard
    fetcher: HttpxUpstreamFetcher
    rewriter: PlaylistRewriter

    # Application Services
    hls_proxy_uc: HlsProxyUseCase
