"""Upstream fetch exceptions."""

from __future__ import annotations


class UpstreamError(Exception):
    """Base class for failures talking to the media origin."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason


class UpstreamStatusError(UpstreamError):
    """Raised when the origin answers with a non-2xx status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, f"upstream status {status_code}")
        self.status_code = status_code


class UpstreamTransportError(UpstreamError):
    """Raised on DNS, connect, timeout or protocol errors."""


class UpstreamRedirectBlocked(UpstreamError):
    """Raised when the origin redirects to a host the origin guard rejects."""


class UpstreamPayloadTooLarge(UpstreamError):
    """Raised when a playlist body exceeds the buffering limit."""
