"""Outbound fetches to the media origin.

Only ``User-Agent`` and ``Cookie`` are taken over from the client request;
every other inbound header stays on this side of the proxy.  Playlists are
buffered (rewriting needs the whole body), segments are streamed raw so a
2-10 MB ``.ts`` file never sits in memory and reaches the client
byte-for-byte.
"""

from __future__ import annotations

import asyncio
import http.cookiejar
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx
import structlog

from hlsrelay.domain.entities.hls import (
    ForwardedHeaders,
    UpstreamPlaylist,
    UpstreamStream,
)
from hlsrelay.domain.exceptions import (
    UpstreamPayloadTooLarge,
    UpstreamRedirectBlocked,
    UpstreamStatusError,
    UpstreamTransportError,
)
from hlsrelay.domain.ports.origin_guard import OriginGuardPort

log = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0"
DEFAULT_MAX_PLAYLIST_BYTES = 5 * 1024 * 1024
_SEGMENT_CHUNK_SIZE = 65536


def origin_guard_hook(
    guard: OriginGuardPort,
) -> Callable[[httpx.Request], Awaitable[None]]:
    """httpx request hook that re-checks the origin guard on every hop.

    httpx fires request hooks for each redirect it follows, so an origin
    cannot bounce the proxy into an internal host.
    """

    async def _check(request: httpx.Request) -> None:
        host = request.url.host
        if not await guard.is_allowed(host):
            log.warning("upstream_redirect_blocked", url=str(request.url), host=host)
            raise UpstreamRedirectBlocked(str(request.url), "disallowed host")

    return _check


def _reject_all_cookies() -> httpx.Cookies:
    # Origin Set-Cookie is never stored; the outbound Cookie comes only from
    # HttpxUpstreamFetcher.build_headers.
    policy = http.cookiejar.DefaultCookiePolicy(allowed_domains=[])
    return httpx.Cookies(http.cookiejar.CookieJar(policy=policy))


def build_upstream_client(
    *,
    timeout_seconds: float,
    follow_redirects: bool = True,
    origin_guard: OriginGuardPort | None = None,
) -> httpx.AsyncClient:
    """Create the shared AsyncClient used for all origin requests."""
    hooks: dict[str, list[Callable[..., Awaitable[None]]]] = {"request": []}
    if origin_guard is not None and follow_redirects:
        hooks["request"].append(origin_guard_hook(origin_guard))
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=follow_redirects,
        event_hooks=hooks,
        cookies=_reject_all_cookies(),
    )


class HttpxUpstreamFetcher:
    """Fetch playlists and segments from an HLS origin with httpx.

    Args:
        http_client: Shared client (timeouts and redirects configured there).
        default_user_agent: Sent when the client did not send a User-Agent.
        max_playlist_bytes: Buffering limit for playlist bodies.
        max_concurrency: Max open origin connections (stampede guard).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        default_user_agent: str = DEFAULT_USER_AGENT,
        max_playlist_bytes: int = DEFAULT_MAX_PLAYLIST_BYTES,
        max_concurrency: int = 100,
    ) -> None:
        self._client = http_client
        self._default_user_agent = default_user_agent
        self._max_playlist_bytes = max_playlist_bytes
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    def build_headers(self, forwarded: ForwardedHeaders) -> dict[str, str]:
        """Outbound header set: User-Agent always, Cookie only if present."""
        headers = {"User-Agent": forwarded.user_agent or self._default_user_agent}
        if forwarded.cookie:
            headers["Cookie"] = forwarded.cookie
        return headers

    async def fetch_playlist(
        self, url: str, headers: ForwardedHeaders
    ) -> UpstreamPlaylist:
        """GET a playlist and return its decoded text.

        Raises:
            UpstreamStatusError: non-2xx response.
            UpstreamTransportError: DNS/connect/timeout/read failure.
            UpstreamPayloadTooLarge: body exceeds ``max_playlist_bytes``.
        """
        async with self._semaphore:
            response = await self._send("GET", url, headers)
            try:
                if not response.is_success:
                    raise UpstreamStatusError(url, response.status_code)

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_playlist_bytes:
                        raise UpstreamPayloadTooLarge(
                            url,
                            f"playlist larger than {self._max_playlist_bytes} bytes",
                        )
            except httpx.RequestError as exc:
                raise UpstreamTransportError(
                    url, f"{type(exc).__name__}: {exc}"
                ) from exc
            finally:
                await response.aclose()

        encoding = response.charset_encoding or "utf-8"
        text = bytes(body).decode(encoding, errors="replace")
        return UpstreamPlaylist(
            status_code=response.status_code,
            text=text,
            headers=dict(response.headers),
        )

    async def open_segment(
        self, url: str, headers: ForwardedHeaders, *, method: str = "GET"
    ) -> UpstreamStream:
        """Open a streamed segment response without buffering the body.

        The concurrency permit is held until the upstream response is closed,
        so ``max_concurrency`` bounds open origin connections, not just
        request starts.  The returned iterator closes the response when
        exhausted, cancelled or failed; ``aclose()`` may also be called
        directly and is idempotent.
        """
        await self._semaphore.acquire()
        released = False

        def _release() -> None:
            nonlocal released
            if not released:
                released = True
                self._semaphore.release()

        try:
            response = await self._send(method, url, headers)
        except BaseException:
            _release()
            raise

        async def _close() -> None:
            try:
                await response.aclose()
            finally:
                _release()

        if not response.is_success:
            await _close()
            raise UpstreamStatusError(url, response.status_code)

        async def _iter() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw(chunk_size=_SEGMENT_CHUNK_SIZE):
                    yield chunk
            except httpx.RequestError:
                log.warning("segment_stream_aborted", url=url, exc_info=True)
                raise
            finally:
                await _close()

        return UpstreamStream(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=_iter(),
            close=_close,
        )

    async def _send(
        self, method: str, url: str, headers: ForwardedHeaders
    ) -> httpx.Response:
        """Send with ``stream=True``.  Caller holds a concurrency permit."""
        request = self._client.build_request(
            method, url, headers=self.build_headers(headers)
        )
        try:
            return await self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise UpstreamTransportError(url, f"{type(exc).__name__}: {exc}") from exc
