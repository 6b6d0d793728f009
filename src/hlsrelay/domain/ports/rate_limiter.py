"""Rate limiter port: per-client admission control."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class RateLimiterPort(Protocol):
    """Port for a per-client request budget.

    Implementations:
      - SlidingWindowRateLimiter (in-process, single instance)

    A multi-instance deployment can back this with a shared store as long
    as ``allow`` stays a single atomic check-and-record.
    """

    def allow(self, client_id: str, now: float | None = None) -> bool:
        """Record and accept the request, or return False when over budget."""
        ...

    def retry_after(self, client_id: str, now: float | None = None) -> int:
        """Seconds until the client regains budget."""
        ...
