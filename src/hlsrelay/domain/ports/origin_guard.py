"""Origin guard port: SSRF protection for outbound fetches."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class OriginGuardPort(Protocol):
    def is_allowed_host(self, host: str) -> bool:
        """Literal check of the host string, no I/O."""
        ...

    async def is_allowed(self, host: str) -> bool:
        """Full check, may resolve the host name."""
        ...
