"""Rate limiting engine (GCRA) with in-memory and Redis stores."""

from .dependency import get_rate_limiter, rate_limit
from .gcra import Decision, gcra_decide
from .limiter import InMemoryRateStore, Policy, RateLimiter, RedisRateStore, build_rate_limiter

__all__ = [
    "Decision",
    "InMemoryRateStore",
    "Policy",
    "RateLimiter",
    "RedisRateStore",
    "build_rate_limiter",
    "gcra_decide",
    "get_rate_limiter",
    "rate_limit",
]
