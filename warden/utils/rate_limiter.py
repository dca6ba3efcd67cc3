"""In-memory sliding-window rate limiter keyed by client address."""

import time
from collections import defaultdict


class RateLimiter:
    """Sliding window rate limiter keyed by identifier (e.g., IP address)."""

    def __init__(self, max_attempts: int = 100, window_seconds: int = 900, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self._attempts.get(key, ()) if t > cutoff]
        if recent:
            self._attempts[key] = recent
        else:
            self._attempts.pop(key, None)
        return recent

    def hit(self, key: str) -> bool:
        """Record one request for ``key``. Returns False when it is over the limit.

        Rejected requests are not recorded, so a client that backs off
        regains capacity as its accepted requests age out.
        """
        now = self._clock()
        recent = self._prune(key, now)
        if len(recent) >= self.max_attempts:
            return False
        self._attempts[key].append(now)

        # Bounded cleanup of stale keys
        if len(self._attempts) > 10000:
            for stale in list(self._attempts.keys())[:100]:
                self._prune(stale, now)
        return True

    def remaining_attempts(self, key: str) -> int:
        return max(0, self.max_attempts - len(self._prune(key, self._clock())))

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        if key is None:
            self._attempts.clear()
        else:
            self._attempts.pop(key, None)
