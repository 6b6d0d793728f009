"""Playlist rewriter port: routes playlist URIs back through the proxy."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PlaylistRewriterPort(Protocol):
    def rewrite(self, body: str, base_url: str) -> str:
        """Return *body* with every segment/playlist URI proxied.

        Relative URIs resolve against *base_url*.  Never raises on odd input.
        """
        ...
