"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import structlog
from fastapi import FastAPI

from hlsrelay.application.use_cases.hls_proxy import HlsProxyUseCase
from hlsrelay.infrastructure.common.rate_limiter import SlidingWindowRateLimiter
from hlsrelay.infrastructure.hls.playlist_rewriter import PlaylistRewriter
from hlsrelay.infrastructure.hls.upstream import (
    HttpxUpstreamFetcher,
    build_upstream_client,
)
from hlsrelay.infrastructure.security.origin_guard import OriginGuard
from hlsrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. Origin guard (the HTTP client's redirect hook uses it)
        2. HTTP client + upstream fetcher
        3. Rate limiter (the only cross-request mutable state)
        4. Playlist rewriter
        5. Proxy use case (uses all of the above)
    """
    state = cast(AppState, app.state)
    config = state.config

    # 1) SSRF guard
    state.origin_guard = OriginGuard(resolve_hostnames=config.resolve_hostnames)
    log.info("origin_guard_initialized", resolve_hostnames=config.resolve_hostnames)

    # 2) HTTP client for the media origin
    state.http_client = build_upstream_client(
        timeout_seconds=config.upstream_timeout_seconds,
        follow_redirects=config.upstream_follow_redirects,
        origin_guard=state.origin_guard,
    )
    state.fetcher = HttpxUpstreamFetcher(
        state.http_client,
        default_user_agent=config.upstream_user_agent,
        max_playlist_bytes=config.max_playlist_bytes,
        max_concurrency=config.upstream_max_concurrency,
    )
    log.info(
        "http_client_initialized",
        timeout_seconds=config.upstream_timeout_seconds,
        max_concurrency=config.upstream_max_concurrency,
    )

    # 3) Per-client rate limiter
    state.rate_limiter = SlidingWindowRateLimiter(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
        max_clients=config.rate_limit_max_clients,
    )
    log.info(
        "rate_limiter_initialized",
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
    )

    # 4) Playlist rewriter (links point back at the public URL)
    state.rewriter = PlaylistRewriter(config.proxy_base)

    # 5) Use case
    state.hls_proxy_uc = HlsProxyUseCase(
        rate_limiter=state.rate_limiter,
        origin_guard=state.origin_guard,
        fetcher=state.fetcher,
        rewriter=state.rewriter,
    )

    log.info("app_startup_complete", public_url=config.public_url)

    try:
        yield
    finally:
        await state.http_client.aclose()
        log.info("http_client_closed")

        log.info("app_shutdown_complete")
