from __future__ import annotations

from .playlist_rewriter import PlaylistRewriter, tokenize_playlist
from .upstream import HttpxUpstreamFetcher, build_upstream_client

__all__ = [
    "HttpxUpstreamFetcher",
    "PlaylistRewriter",
    "build_upstream_client",
    "tokenize_playlist",
]
