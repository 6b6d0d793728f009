from .origin_guard import OriginGuardPort
from .playlist_rewriter import PlaylistRewriterPort
from .rate_limiter import RateLimiterPort
from .upstream import UpstreamFetcherPort

__all__ = [
    "OriginGuardPort",
    "PlaylistRewriterPort",
    "RateLimiterPort",
    "UpstreamFetcherPort",
]
