from .hls import (
    PLAYLIST_MIME_TYPE,
    SEGMENT_MIME_TYPE,
    ForwardedHeaders,
    LineKind,
    PlaylistLine,
    ProxyErrorKind,
    ResourceKind,
    TargetURL,
    UpstreamPlaylist,
    UpstreamStream,
)

__all__ = [
    "PLAYLIST_MIME_TYPE",
    "SEGMENT_MIME_TYPE",
    "ForwardedHeaders",
    "LineKind",
    "PlaylistLine",
    "ProxyErrorKind",
    "ResourceKind",
    "TargetURL",
    "UpstreamPlaylist",
    "UpstreamStream",
]
