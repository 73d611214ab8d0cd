"""In-memory sliding-window rate limiting per caller."""

import time
from typing import Callable


class RateLimiter:
    """Allows ``limit`` requests per ``window_seconds`` for each key.

    Process-local: with several workers every worker keeps its own window.
    Keys with no request inside the window are dropped, at the latest one
    window after they went quiet.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, list[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> list[float]:
        window_start = now - self.window_seconds
        requests = [ts for ts in self._requests.get(key, ()) if ts > window_start]
        if requests:
            self._requests[key] = requests
        else:
            self._requests.pop(key, None)
        return requests

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        window_start = now - self.window_seconds
        for key in [k for k, requests in self._requests.items() if requests[-1] <= window_start]:
            del self._requests[key]
        self._last_sweep = now

    def check(self, key: str) -> bool:
        """Record a request for ``key``. Returns False if it is over the limit."""
        now = self._clock()
        self._sweep(now)
        requests = self._prune(key, now)
        if len(requests) >= self.limit:
            return False
        requests.append(now)
        self._requests[key] = requests
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may send another request."""
        now = self._clock()
        requests = self._prune(key, now)
        if len(requests) < self.limit:
            return 0
        return max(1, int(requests[0] + self.window_seconds - now + 0.999))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)

    @property
    def tracked_keys(self) -> int:
        return len(self._requests)
