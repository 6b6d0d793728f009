"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from starlette.responses import Response

from hlsrelay import __version__
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.interfaces.app_state import AppState
from hlsrelay.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app: configuration only, no resource initialization.

    Resources (HTTP client, rate limiter, guard, rewriter) are created in
    lifespan().
    """
    app = FastAPI(
        title="hlsrelay",
        description="HLS reverse proxy with playlist rewriting",
        version=__version__,
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config

    from hlsrelay.interfaces.api.hls.router import router as hls_router

    app.include_router(hls_router, prefix="/api")

    @app.get("/api/healthz")
    async def healthz() -> dict[str, str]:
        """Liveness check, returns 200 as long as the process is running."""
        return {"status": "ok"}

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ):
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            status_code = response.status_code if response is not None else 500

            # The target URL may carry origin auth tokens; log the path only.
            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
