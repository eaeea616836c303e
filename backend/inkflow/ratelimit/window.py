from dataclasses import dataclass
import threading
import time
from typing import Callable, Dict, Optional, Tuple

PRUNE_EVERY = 256


@dataclass
class Decision:
    allowed: bool
    remaining: int
    limit: int
    reset_epoch_s: float
    retry_after_s: float = 0.0


class FixedWindowRateLimiter:
    """
    Fixed-window counter keyed by (bucket, identity).

    The check-and-increment for a key happens under one lock acquisition.
    Expired windows are dropped every ``PRUNE_EVERY`` calls.
    """

    def __init__(
        self,
        buckets: Dict[str, Tuple[int, int]],
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.buckets = dict(buckets)
        self._clock = clock or time.time
        self._lock = threading.Lock()
        # (bucket, identity) -> (window_start, count)
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._calls = 0

    def hit(self, bucket: str, identity: str) -> Decision:
        max_requests, window_seconds = self.buckets[bucket]
        now = self._clock()
        key = (bucket, identity)

        with self._lock:
            self._calls += 1
            if self._calls % PRUNE_EVERY == 0:
                self._prune(now)

            window_start, count = self._windows.get(key, (now, 0))
            if now - window_start >= window_seconds:
                window_start, count = now, 0
            reset_at = window_start + window_seconds

            if count >= max_requests:
                self._windows[key] = (window_start, count)
                return Decision(
                    allowed=False,
                    remaining=0,
                    limit=max_requests,
                    reset_epoch_s=reset_at,
                    retry_after_s=max(0.0, reset_at - now),
                )

            count += 1
            self._windows[key] = (window_start, count)
            return Decision(
                allowed=True,
                remaining=max_requests - count,
                limit=max_requests,
                reset_epoch_s=reset_at,
            )

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (window_start, _) in self._windows.items()
            if now - window_start >= self.buckets[key[0]][1]
        ]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
