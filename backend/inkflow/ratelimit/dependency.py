from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import HTTPException, Request, Response

from inkflow.core.config import settings

from .headers import build_rate_headers, set_rate_headers
from .identity import resolve_identity
from .metrics import rl_decisions
from .window import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter | None:
    return getattr(request.app.state, "rate_limiter", None)


def rate_limit(bucket: str) -> Callable[[Request, Response], Awaitable[None]]:
    """FastAPI dependency enforcing ``bucket`` for the calling client."""

    async def dep(request: Request, response: Response) -> None:
        if not settings.rate_limit_enabled:
            return
        limiter = get_rate_limiter(request)
        if limiter is None or bucket not in limiter.buckets:
            logger.warning("Rate limiter not configured for bucket %s", bucket)
            return

        identity = resolve_identity(request)
        decision = limiter.hit(bucket, identity)
        set_rate_headers(
            response,
            decision.remaining,
            decision.limit,
            decision.reset_epoch_s,
            None if decision.allowed else decision.retry_after_s,
        )

        if decision.allowed:
            rl_decisions.labels(bucket=bucket, action="allow").inc()
            return

        rl_decisions.labels(bucket=bucket, action="block").inc()
        logger.info("Rate limit exceeded", extra={"bucket": bucket, "identity": identity})
        headers: dict[str, Any] = build_rate_headers(
            decision.remaining, decision.limit, decision.reset_epoch_s, decision.retry_after_s
        )
        raise HTTPException(
            status_code=429,
            detail={"message": "Rate limit exceeded", "code": "RATE_LIMITED"},
            headers=headers,
        )

    return dep
