"""
Sliding-window rate limiter.

Keeps a ledger of request timestamps per conversation key. The
prune-count-record sequence runs under a lock so concurrent requests
sharing a key cannot both slip under the cap.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-key sliding-window throttle."""

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 10.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def hit(self, key: str) -> Optional[float]:
        """
        Register a request for a key.

        Returns:
            None when the request is allowed, otherwise the number of
            seconds until the oldest in-window request leaves the window.
        """
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            timestamps = [t for t in self._requests[key] if t > window_start]

            if len(timestamps) >= self.max_requests:
                self._requests[key] = timestamps
                retry_after = timestamps[0] + self.window_seconds - now
                logger.warning(f"Rate limit exceeded for {_mask_key(key)}")
                return max(retry_after, 0.0)

            timestamps.append(now)
            self._requests[key] = timestamps
            return None

    def remaining(self, key: str) -> int:
        """Requests still allowed in the current window."""
        window_start = self._clock() - self.window_seconds
        with self._lock:
            active = [t for t in self._requests.get(key, []) if t > window_start]
        return max(0, self.max_requests - len(active))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._requests.clear()
            else:
                self._requests.pop(key, None)


def _mask_key(key: str) -> str:
    if key.isdigit() and len(key) > 4:
        return f"***{key[-4:]}"
    return key
