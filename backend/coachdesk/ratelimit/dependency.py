from __future__ import annotations

from fastapi import Request, Response

from ..core.config import settings
from .headers import set_rate_headers
from .identity import resolve_identity
from .limiter import RateLimiter, build_rate_limiter


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter, _backend = build_rate_limiter(settings)
        request.app.state.rate_limiter = limiter
    return limiter


def rate_limit(bucket: str):
    # FastAPI dependency to attach on routes
    def dep(request: Request, response: Response) -> None:
        limiter = get_rate_limiter(request)
        decision = limiter.check(bucket, resolve_identity(request))
        if limiter.enabled:
            set_rate_headers(response, decision.remaining, decision.limit, decision.reset_epoch_s)

    return dep
