"""HLS proxy endpoints (playlist + segment)."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.responses import Response

from hlsrelay.application.use_cases.hls_proxy import ProxyFailure
from hlsrelay.domain.entities.hls import (
    PLAYLIST_MIME_TYPE,
    SEGMENT_MIME_TYPE,
    ForwardedHeaders,
)
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["hls"])

UNKNOWN_CLIENT = "unknown"

# Upstream response headers worth handing on to the player for segments.
_SEGMENT_PASSTHROUGH_HEADERS = (
    "content-length",
    "content-range",
    "accept-ranges",
    "content-encoding",
    "etag",
    "last-modified",
    "cache-control",
)


def client_identity(request: Request, config: AppConfig) -> str:
    """Rate-limit key: first forwarded address, else peer, else a sentinel.

    Without a forwarded header and with peer fallback disabled, every such
    client shares the single ``"unknown"`` bucket.
    """
    forwarded = request.headers.get(config.client_ip_header)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if config.rate_limit_peer_fallback and request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def cors_headers(request: Request, allowed_origins: list[str]) -> dict[str, str]:
    """CORS headers for every proxy response, successful or not."""
    headers = {
        "Access-Control-Allow-Methods": "GET, HEAD",
        "Access-Control-Allow-Headers": "Content-Type, Cookie",
    }
    if not allowed_origins or "*" in allowed_origins:
        headers["Access-Control-Allow-Origin"] = "*"
        return headers

    origin = request.headers.get("origin")
    headers["Access-Control-Allow-Origin"] = (
        origin if origin in allowed_origins else allowed_origins[0]
    )
    headers["Vary"] = "Origin"
    return headers


def _forwarded_headers(request: Request) -> ForwardedHeaders:
    return ForwardedHeaders(
        user_agent=request.headers.get("user-agent"),
        cookie=request.headers.get("cookie"),
    )


def _failure_response(failure: ProxyFailure, cors: dict[str, str]) -> Response:
    headers = {**cors, "Cache-Control": "no-store"}
    if failure.retry_after is not None:
        headers["Retry-After"] = str(failure.retry_after)
    return PlainTextResponse(
        failure.message, status_code=failure.status_code, headers=headers
    )


@router.api_route("/m3u8-proxy", methods=["GET", "HEAD"])
async def m3u8_proxy(request: Request) -> Response:
    """Fetch an upstream playlist and return it with every URI re-routed."""
    state = cast(AppState, request.app.state)
    config = state.config
    cors = cors_headers(request, config.cors_allowed_origins)

    result = await state.hls_proxy_uc.playlist(
        request.query_params.get("url"),
        client_id=client_identity(request, config),
        headers=_forwarded_headers(request),
    )
    if isinstance(result, ProxyFailure):
        return _failure_response(result, cors)

    return Response(
        content=result.body,
        media_type=PLAYLIST_MIME_TYPE,
        headers={
            **cors,
            "Cache-Control": f"public, max-age={config.playlist_cache_seconds}",
        },
    )


@router.api_route("/ts-proxy", methods=["GET", "HEAD"])
async def ts_proxy(request: Request) -> Response:
    """Stream an upstream ``.ts`` segment through unmodified."""
    state = cast(AppState, request.app.state)
    config = state.config
    cors = cors_headers(request, config.cors_allowed_origins)

    result = await state.hls_proxy_uc.segment(
        request.query_params.get("url"),
        client_id=client_identity(request, config),
        headers=_forwarded_headers(request),
        method=request.method,
    )
    if isinstance(result, ProxyFailure):
        return _failure_response(result, cors)

    stream = result.stream
    headers = {
        name: stream.headers[name]
        for name in _SEGMENT_PASSTHROUGH_HEADERS
        if name in stream.headers
    }
    headers.update(cors)

    # The background close also runs when a client disconnect cancels the
    # body iterator, so the upstream connection is always released.
    return StreamingResponse(
        stream.body,
        status_code=stream.status_code,
        media_type=SEGMENT_MIME_TYPE,
        headers=headers,
        background=BackgroundTask(stream.aclose),
    )


@router.options("/m3u8-proxy")
@router.options("/ts-proxy")
async def proxy_preflight(request: Request) -> Response:
    """CORS preflight for both proxy endpoints."""
    state = cast(AppState, request.app.state)
    return Response(
        status_code=204,
        headers=cors_headers(request, state.config.cors_allowed_origins),
    )
