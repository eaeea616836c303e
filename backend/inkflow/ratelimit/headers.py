import math

from fastapi import Response


def build_rate_headers(
    remaining: int, limit: int, reset_epoch_s: float, retry_after_s: float | None
) -> dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(max(remaining, 0)),
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Reset": str(int(reset_epoch_s)),
    }
    if retry_after_s and retry_after_s > 0:
        headers["Retry-After"] = str(math.ceil(retry_after_s))
    return headers


def set_rate_headers(
    res: Response, remaining: int, limit: int, reset_epoch_s: float, retry_after_s: float | None
) -> None:
    res.headers.update(build_rate_headers(remaining, limit, reset_epoch_s, retry_after_s))
