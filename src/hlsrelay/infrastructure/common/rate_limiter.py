"""Per-client sliding-window rate limiter for inbound proxy requests.

Each client identity owns a deque of request timestamps.  Expired entries
are pruned from the left before counting, so every check is O(k) in the
number of expired entries.  The map of identities is an LRU capped at
*max_clients*, and a periodic sweep drops identities whose window has
emptied, so memory stays bounded in a long-running process.
"""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict, deque

import structlog

log = structlog.get_logger(__name__)

# How many allow() calls between full sweeps of idle client entries.
_GC_INTERVAL = 256


class SlidingWindowRateLimiter:
    """Sliding-window request counter keyed by client identity.

    Args:
        window_seconds: Length of the trailing window.
        max_requests: Requests allowed per window. 0 = unlimited.
        max_clients: Upper bound on tracked identities (LRU eviction).
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 100,
        *,
        max_clients: int = 10_000,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._window = float(window_seconds)
        self._max_requests = max_requests
        self._max_clients = max(1, max_clients)
        self._clients: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = threading.Lock()
        self._calls = 0

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def tracked_clients(self) -> int:
        """Number of client identities currently held in memory."""
        with self._lock:
            return len(self._clients)

    def allow(self, client_id: str, now: float | None = None) -> bool:
        """Accept and record a request, or reject it without recording."""
        if self._max_requests <= 0:
            return True
        if now is None:
            now = time.monotonic()

        with self._lock:
            timestamps = self._window_for(client_id, now)

            if len(timestamps) >= self._max_requests:
                log.debug(
                    "rate_limit_window_full",
                    client_id=client_id,
                    current=len(timestamps),
                    limit=self._max_requests,
                )
                return False

            timestamps.append(now)

            self._calls += 1
            if self._calls >= _GC_INTERVAL:
                self._calls = 0
                self._sweep(now)
            return True

    def remaining(self, client_id: str, now: float | None = None) -> int:
        """Requests left in the current window for *client_id*."""
        if self._max_requests <= 0:
            return 0
        if now is None:
            now = time.monotonic()
        with self._lock:
            timestamps = self._clients.get(client_id)
            if timestamps is None:
                return self._max_requests
            self._prune(timestamps, now)
            return max(0, self._max_requests - len(timestamps))

    def retry_after(self, client_id: str, now: float | None = None) -> int:
        """Whole seconds until the oldest recorded request leaves the window."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            timestamps = self._clients.get(client_id)
            if not timestamps:
                return 1
            self._prune(timestamps, now)
            if not timestamps:
                return 1
            wait = timestamps[0] + self._window - now
            return max(1, math.ceil(wait))

    def _window_for(self, client_id: str, now: float) -> deque[float]:
        """Return the pruned deque for *client_id*, creating it if needed.

        Caller must hold the lock.
        """
        timestamps = self._clients.get(client_id)
        if timestamps is None:
            timestamps = deque()
            self._clients[client_id] = timestamps
            if len(self._clients) > self._max_clients:
                evicted, _ = self._clients.popitem(last=False)
                log.debug("rate_limit_client_evicted", client_id=evicted)
        else:
            self._clients.move_to_end(client_id)

        self._prune(timestamps, now)
        return timestamps

    def _prune(self, timestamps: deque[float], now: float) -> None:
        cutoff = now - self._window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def _sweep(self, now: float) -> None:
        """Drop identities whose whole window has expired."""
        stale: list[str] = []
        for client_id, timestamps in self._clients.items():
            self._prune(timestamps, now)
            if not timestamps:
                stale.append(client_id)
        for client_id in stale:
            del self._clients[client_id]
        if stale:
            log.debug("rate_limit_sweep", evicted=len(stale))
