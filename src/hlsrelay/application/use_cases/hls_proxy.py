"""HLS proxy use case: the per-request check list shared by both endpoints.

Each request walks the same steps in order and stops at the first failure:

1. parse the ``url`` parameter
2. decode and validate it as an absolute http(s) URL
3. check the extension against the endpoint
4. origin guard (SSRF)
5. rate limit
6. fetch from the origin
7. rewrite (playlists only)

Every step reports failure as a :class:`ProxyFailure` value instead of
raising, so the router maps results to responses with plain branches.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote

import structlog

from hlsrelay.domain.entities.hls import (
    ForwardedHeaders,
    ProxyErrorKind,
    ResourceKind,
    TargetURL,
    UpstreamStream,
)
from hlsrelay.domain.exceptions import UpstreamError
from hlsrelay.domain.ports import (
    OriginGuardPort,
    PlaylistRewriterPort,
    RateLimiterPort,
    UpstreamFetcherPort,
)

log = structlog.get_logger(__name__)

_UNSUPPORTED_MESSAGES = {
    ResourceKind.PLAYLIST: "Only M3U8 playlists supported",
    ResourceKind.SEGMENT: "Only TS segments supported",
}


@dataclass(frozen=True)
class ProxyFailure:
    """Terminal outcome of a rejected or failed proxy request."""

    kind: ProxyErrorKind
    detail: str | None = None
    retry_after: int | None = None

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def message(self) -> str:
        return self.detail or self.kind.message


@dataclass(frozen=True)
class PlaylistResult:
    target: TargetURL
    body: str


@dataclass(frozen=True)
class SegmentResult:
    target: TargetURL
    stream: UpstreamStream


def decode_target(raw: str) -> str:
    """Apply the single URL decode of the ``url`` parameter.

    The query-string parser has already decoded once.  A value that still
    has no ``://`` but contains escapes came from a client that encoded
    twice, so it gets decoded one more time.
    """
    raw = raw.strip()
    if "://" not in raw and "%" in raw:
        return unquote(raw)
    return raw


class HlsProxyUseCase:
    """Validate, guard, rate-limit, fetch and (for playlists) rewrite.

    All collaborators are injected; nothing here is a module-level singleton,
    so tests construct a fresh limiter per case.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiterPort,
        origin_guard: OriginGuardPort,
        fetcher: UpstreamFetcherPort,
        rewriter: PlaylistRewriterPort,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._origin_guard = origin_guard
        self._fetcher = fetcher
        self._rewriter = rewriter

    async def playlist(
        self,
        raw_url: str | None,
        *,
        client_id: str,
        headers: ForwardedHeaders,
    ) -> PlaylistResult | ProxyFailure:
        """Fetch an ``.m3u8`` playlist and rewrite its URIs."""
        admitted = await self._admit(raw_url, ResourceKind.PLAYLIST, client_id)
        if isinstance(admitted, ProxyFailure):
            return admitted
        target = admitted

        try:
            upstream = await self._fetcher.fetch_playlist(target.url, headers)
        except UpstreamError as exc:
            return self._upstream_failure(target, exc)

        body = self._rewriter.rewrite(upstream.text, target.url)
        log.info(
            "playlist_proxied",
            host=target.host,
            client_id=client_id,
            bytes=len(body),
        )
        return PlaylistResult(target=target, body=body)

    async def segment(
        self,
        raw_url: str | None,
        *,
        client_id: str,
        headers: ForwardedHeaders,
        method: str = "GET",
    ) -> SegmentResult | ProxyFailure:
        """Open a streamed ``.ts`` segment.  Caller owns closing the stream."""
        admitted = await self._admit(raw_url, ResourceKind.SEGMENT, client_id)
        if isinstance(admitted, ProxyFailure):
            return admitted
        target = admitted

        try:
            stream = await self._fetcher.open_segment(
                target.url, headers, method=method
            )
        except UpstreamError as exc:
            return self._upstream_failure(target, exc)

        return SegmentResult(target=target, stream=stream)

    async def _admit(
        self, raw_url: str | None, expected: ResourceKind, client_id: str
    ) -> TargetURL | ProxyFailure:
        """Steps 1-5: everything before the outbound request."""
        if raw_url is None or not raw_url.strip():
            return ProxyFailure(ProxyErrorKind.MISSING_URL)

        target = TargetURL.parse(decode_target(raw_url))
        if target is None:
            log.info("proxy_invalid_url", endpoint=expected.value)
            return ProxyFailure(ProxyErrorKind.INVALID_URL)

        if target.kind is not expected:
            return ProxyFailure(
                ProxyErrorKind.UNSUPPORTED_TYPE,
                detail=_UNSUPPORTED_MESSAGES[expected],
            )

        if not await self._origin_guard.is_allowed(target.host):
            log.warning(
                "proxy_host_rejected",
                host=target.host,
                client_id=client_id,
                endpoint=expected.value,
            )
            return ProxyFailure(ProxyErrorKind.HOST_NOT_ALLOWED)

        if not self._rate_limiter.allow(client_id):
            retry_after = self._rate_limiter.retry_after(client_id)
            log.warning(
                "rate_limit_exceeded",
                client_id=client_id,
                endpoint=expected.value,
                retry_after=retry_after,
            )
            return ProxyFailure(ProxyErrorKind.RATE_LIMITED, retry_after=retry_after)

        return target

    def _upstream_failure(self, target: TargetURL, exc: UpstreamError) -> ProxyFailure:
        log.warning(
            "upstream_failed",
            url=target.url,
            error_type=type(exc).__name__,
            reason=exc.reason,
            status_code=getattr(exc, "status_code", None),
        )
        return ProxyFailure(ProxyErrorKind.UPSTREAM_FAILURE)
