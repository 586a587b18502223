"""Minimum-interval request gate.

Airtable allows 5 requests/second per base, so the default spacing is
200 ms. One limiter instance belongs to one provider client; independent
clients have independent limiters and do not wait on each other.
"""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Space successive ``gate()`` calls by at least ``min_interval_ms``.

    Concurrent callers on the same instance are serialized by a lock, so
    the spacing holds even when several tasks share one client.
    """

    def __init__(self, min_interval_ms: int = 200) -> None:
        self._min_interval = max(min_interval_ms, 0) / 1000.0
        self._last_request: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval_ms(self) -> int:
        return int(self._min_interval * 1000)

    async def gate(self) -> None:
        """Wait until it is safe to issue the next request."""
        async with self._lock:
            if self._last_request is not None:
                elapsed = time.monotonic() - self._last_request
                remaining = self._min_interval - elapsed
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request = time.monotonic()
