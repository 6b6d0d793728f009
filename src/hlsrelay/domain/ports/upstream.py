"""Upstream fetcher port: outbound requests to the media origin."""

from __future__ import annotations

from typing import Protocol

from hlsrelay.domain.entities.hls import (
    ForwardedHeaders,
    UpstreamPlaylist,
    UpstreamStream,
)


class UpstreamFetcherPort(Protocol):
    """Port for fetching playlists and segments from an origin.

    Both methods raise ``UpstreamError`` subclasses on transport
    failures and non-2xx statuses.  No retries.
    """

    async def fetch_playlist(
        self, url: str, headers: ForwardedHeaders
    ) -> UpstreamPlaylist:
        """GET a playlist and buffer its full text."""
        ...

    async def open_segment(
        self, url: str, headers: ForwardedHeaders, *, method: str = "GET"
    ) -> UpstreamStream:
        """Open a streamed segment response.  Caller must ``aclose()`` it."""
        ...
