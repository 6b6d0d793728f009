"""HLS playlist rewriting: route segment and variant URIs through the proxy.

The playlist is tokenized into typed lines first, and only URI lines that
point at a ``.ts`` segment or a ``.m3u8`` playlist are rewritten.  Tag
lines (``#EXTINF``, ``#EXT-X-KEY`` ...) are never touched, even when they
happen to contain ``.ts`` somewhere.

Rewriting is best-effort: anything the tokenizer does not recognise is
passed through byte-for-byte.
"""

from __future__ import annotations

from collections.abc import Callable
from urllib.parse import parse_qs, quote, urljoin, urlsplit

import structlog

from hlsrelay.domain.entities.hls import LineKind, PlaylistLine, ResourceKind

log = structlog.get_logger(__name__)

PLAYLIST_ENDPOINT = "m3u8-proxy"
SEGMENT_ENDPOINT = "ts-proxy"


def classify_uri(uri: str) -> LineKind:
    """Classify a non-comment playlist line by the extension of its path."""
    try:
        path = urlsplit(uri).path
    except ValueError:
        return LineKind.OTHER
    kind = ResourceKind.from_path(path)
    if kind is ResourceKind.SEGMENT:
        return LineKind.SEGMENT_URI
    if kind is ResourceKind.PLAYLIST:
        return LineKind.PLAYLIST_URI
    return LineKind.OTHER


def tokenize_playlist(
    body: str, *, is_proxied: Callable[[str], bool] | None = None
) -> list[PlaylistLine]:
    """Split *body* into typed lines, keeping line terminators.

    *is_proxied* lets the caller mark URIs that already point at the proxy.
    """
    lines: list[PlaylistLine] = []
    for raw in body.splitlines(keepends=True):
        stripped = raw.strip()
        if not stripped:
            kind = LineKind.BLANK
        elif stripped.startswith("#"):
            kind = LineKind.COMMENT
        elif is_proxied is not None and is_proxied(stripped):
            kind = LineKind.PROXIED_URI
        else:
            kind = classify_uri(stripped)
        lines.append(PlaylistLine(kind=kind, raw=raw))
    return lines


def has_scheme(uri: str) -> bool:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


class PlaylistRewriter:
    """Rewrites playlist URIs to ``<proxy_base>/<endpoint>?url=<absolute>``.

    Args:
        proxy_base: Public base of the proxy API, e.g.
            ``https://relay.example/api`` (no trailing slash needed).
        playlist_endpoint: Endpoint name for nested playlists.
        segment_endpoint: Endpoint name for media segments.
    """

    def __init__(
        self,
        proxy_base: str,
        *,
        playlist_endpoint: str = PLAYLIST_ENDPOINT,
        segment_endpoint: str = SEGMENT_ENDPOINT,
    ) -> None:
        self._proxy_base = proxy_base.rstrip("/")
        self._playlist_endpoint = playlist_endpoint
        self._segment_endpoint = segment_endpoint

        base = urlsplit(self._proxy_base)
        self._base_origin = (base.scheme.lower(), base.netloc.lower())
        self._endpoint_paths = frozenset(
            f"{base.path}/{endpoint}"
            for endpoint in (playlist_endpoint, segment_endpoint)
        )

    @property
    def proxy_base(self) -> str:
        return self._proxy_base

    def proxy_url(self, target: str, kind: ResourceKind) -> str:
        """Build the proxy URL that fetches *target* through *kind*'s endpoint."""
        endpoint = (
            self._playlist_endpoint
            if kind is ResourceKind.PLAYLIST
            else self._segment_endpoint
        )
        return f"{self._proxy_base}/{endpoint}?url={quote(target, safe='')}"

    def is_proxied(self, uri: str) -> bool:
        """True when *uri* already points at one of this proxy's endpoints."""
        try:
            parts = urlsplit(uri)
        except ValueError:
            return False
        if (parts.scheme.lower(), parts.netloc.lower()) != self._base_origin:
            return False
        if parts.path not in self._endpoint_paths:
            return False
        return "url" in parse_qs(parts.query)

    def rewrite(self, body: str, base_url: str) -> str:
        """Rewrite every segment / playlist URI line of *body*.

        Relative URIs are resolved against *base_url*, the original upstream
        playlist URL.  Absolute URIs keep their scheme and host unchanged.
        """
        out: list[str] = []
        rewritten = 0
        for line in tokenize_playlist(body, is_proxied=self.is_proxied):
            if line.kind is LineKind.SEGMENT_URI:
                out.append(self._rewrite_line(line, base_url, ResourceKind.SEGMENT))
                rewritten += 1
            elif line.kind is LineKind.PLAYLIST_URI:
                out.append(self._rewrite_line(line, base_url, ResourceKind.PLAYLIST))
                rewritten += 1
            else:
                out.append(line.raw)

        log.debug("playlist_rewritten", base_url=base_url, rewritten_lines=rewritten)
        return "".join(out)

    def _rewrite_line(
        self, line: PlaylistLine, base_url: str, kind: ResourceKind
    ) -> str:
        uri = line.uri
        target = uri if has_scheme(uri) else urljoin(base_url, uri)

        # Keep surrounding whitespace and the original line terminator.
        start = line.raw.index(uri)
        end = start + len(uri)
        return line.raw[:start] + self.proxy_url(target, kind) + line.raw[end:]
