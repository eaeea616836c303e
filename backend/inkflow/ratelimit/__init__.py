"""Process-local fixed-window rate limiting.

Best-effort abuse protection: counters live in one process and are not shared
between workers.
"""

from .dependency import rate_limit
from .window import Decision, FixedWindowRateLimiter

__all__ = [
    "Decision",
    "FixedWindowRateLimiter",
    "rate_limit",
]
