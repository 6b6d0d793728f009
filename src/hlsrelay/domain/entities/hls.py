"""Domain entities for the HLS proxy.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit

PLAYLIST_MIME_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_MIME_TYPE = "video/mp2t"


class ResourceKind(str, Enum):
    """What an upstream URL points at, derived from its path extension."""

    PLAYLIST = "playlist"
    SEGMENT = "segment"

    @property
    def extension(self) -> str:
        return ".m3u8" if self is ResourceKind.PLAYLIST else ".ts"

    @property
    def mime_type(self) -> str:
        return PLAYLIST_MIME_TYPE if self is ResourceKind.PLAYLIST else SEGMENT_MIME_TYPE

    @classmethod
    def from_path(cls, path: str) -> ResourceKind | None:
        """Classify a URL path (query string already stripped)."""
        lowered = path.lower()
        for kind in cls:
            if lowered.endswith(kind.extension):
                return kind
        return None


class ProxyErrorKind(Enum):
    """Terminal failure of a proxy request, one HTTP response each.

    The value is ``(status_code, client_message)``.  Messages are short and
    never carry upstream details.
    """

    MISSING_URL = (400, "Missing url param")
    INVALID_URL = (400, "Invalid url param")
    UNSUPPORTED_TYPE = (400, "Unsupported resource type")
    HOST_NOT_ALLOWED = (403, "Invalid host")
    RATE_LIMITED = (429, "Rate limit exceeded")
    UPSTREAM_FAILURE = (500, "Proxy failed")

    @property
    def status_code(self) -> int:
        return self.value[0]

    @property
    def message(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class TargetURL:
    """Absolute upstream URL supplied by the client."""

    url: str
    scheme: str
    host: str
    path: str

    @property
    def kind(self) -> ResourceKind | None:
        return ResourceKind.from_path(self.path)

    @classmethod
    def parse(cls, raw: str) -> TargetURL | None:
        """Parse *raw* into a TargetURL, or ``None`` if it is not a usable
        absolute http(s) URL."""
        raw = raw.strip()
        if not raw:
            return None
        try:
            parts = urlsplit(raw)
            host = parts.hostname
            # .port raises ValueError on a malformed port
            _ = parts.port
        except ValueError:
            return None
        if parts.scheme.lower() not in ("http", "https") or not host:
            return None
        return cls(url=raw, scheme=parts.scheme.lower(), host=host, path=parts.path)


@dataclass(frozen=True)
class ForwardedHeaders:
    """The only inbound headers that are passed on to the origin."""

    user_agent: str | None = None
    cookie: str | None = None


class LineKind(str, Enum):
    """Classification of a single playlist line."""

    BLANK = "blank"
    COMMENT = "comment"
    SEGMENT_URI = "segment_uri"
    PLAYLIST_URI = "playlist_uri"
    PROXIED_URI = "proxied_uri"
    OTHER = "other"


@dataclass(frozen=True)
class PlaylistLine:
    """One playlist line with its terminator preserved in ``raw``."""

    kind: LineKind
    raw: str

    @property
    def uri(self) -> str:
        return self.raw.strip()


@dataclass(frozen=True)
class UpstreamPlaylist:
    """Fully buffered playlist response from the origin."""

    status_code: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class UpstreamStream:
    """Streamed (unbuffered) origin response for a media segment."""

    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]

    async def aclose(self) -> None:
        await self.close()
