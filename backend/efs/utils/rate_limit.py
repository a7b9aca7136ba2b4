"""In-memory rate limiting for the login and course search endpoints."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Optional


def rate_key(route: str, client: Optional[str], sid: Optional[str] = None) -> str:
    """Bucket name for one caller of one route.

    Signed-in callers are counted per student id, so students behind one
    campus NAT address do not share a budget; anonymous callers are counted
    per client address.
    """
    who = f"sid:{sid}" if sid else f"ip:{client or 'unknown'}"
    return f"{route}|{who}"


class InMemoryRateLimiter:
    """Sliding-window limiter: at most `max_requests` hits per key within
    the last `window_seconds`. A limit of zero or less disables the check.
    """

    def __init__(self):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record one hit for `key`; returns `(allowed, retry_after_seconds)`."""
        if max_requests <= 0:
            return True, 0
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            cutoff = now - window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= max_requests:
                return False, max(1, int(window_seconds - (now - hits[0])))
            hits.append(now)
            return True, 0

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
