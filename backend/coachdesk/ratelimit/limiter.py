"""GCRA rate limiter with pluggable TAT storage."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Dict, Optional, Protocol, Tuple

import redis

from ..core.config import Settings
from ..core.exceptions import RateLimitedException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .gcra import Decision, gcra_decide, interval_for

logger = logging.getLogger(__name__)

NAMESPACE = "coachdesk:rl"


@dataclass(frozen=True)
class Policy:
    rate_per_min: float
    burst: int


def policies_from_settings(config: Settings) -> Dict[str, Policy]:
    """Bucket name -> policy. Friend codes allow N attempts per hour."""
    per_hour = config.friend_code_rate_per_hour
    return {
        "reservation": Policy(config.reservation_rate_per_min, config.reservation_burst),
        "friend_code": Policy(per_hour / 60.0, max(0, per_hour - 1)),
    }


class RateStore(Protocol):
    def decide(self, key: str, now_s: float, rate_per_min: float, burst: int) -> Decision:
        ...


class InMemoryRateStore:
    """Single-process store; state lives only as long as the limiter."""

    def __init__(self) -> None:
        self._tats: Dict[str, float] = {}
        self._lock = threading.Lock()

    def decide(self, key: str, now_s: float, rate_per_min: float, burst: int) -> Decision:
        with self._lock:
            new_tat, decision = gcra_decide(now_s, self._tats.get(key), rate_per_min, burst)
            if decision.allowed:
                self._tats[key] = new_tat
            return decision

    def clear(self) -> None:
        with self._lock:
            self._tats.clear()


# Lua script implementing GCRA logic using TAT (Theoretical Arrival Time)
# KEYS[1] = storage key
# ARGV[1] = now_ms
# ARGV[2] = interval_ms (60_000 / rate_per_min)
# ARGV[3] = burst
# Returns: {allowed, retry_after_ms, remaining, limit}
GCRA_LUA = r"""
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local interval_ms = tonumber(ARGV[2])
local burst = tonumber(ARGV[3])
local limit = burst + 1

local tat_ms = redis.call('GET', key)
if tat_ms then tat_ms = tonumber(tat_ms) end
if not tat_ms then
  tat_ms = now_ms - (burst * interval_ms)
end

local allow_at_ms = tat_ms - (burst * interval_ms)
if now_ms >= allow_at_ms then
  local new_tat_ms = math.max(tat_ms, now_ms) + interval_ms
  local remaining = math.min(burst, math.max(0, math.floor(limit - ((new_tat_ms - now_ms) / interval_ms) + 0.000001)))
  redis.call('SET', key, new_tat_ms, 'PX', math.ceil(new_tat_ms - now_ms))
  return {1, 0, remaining, limit}
end
return {0, math.ceil(allow_at_ms - now_ms), 0, limit}
"""


class RedisRateStore:
    """Shared store for multi-worker deployments. Fails open if redis errors."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisRateStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def decide(self, key: str, now_s: float, rate_per_min: float, burst: int) -> Decision:
        interval_ms = int(interval_for(rate_per_min) * 1000)
        try:
            res = self.client.eval(GCRA_LUA, 1, key, int(now_s * 1000), interval_ms, burst)
        except redis.RedisError as exc:
            logger.warning("rate_limit_redis_unavailable: %s", exc)
            return Decision(True, retry_after_s=0.0, remaining=burst, limit=burst + 1, reset_epoch_s=now_s)
        allowed = bool(int(res[0]))
        retry_after_s = float(res[1]) / 1000.0
        return Decision(
            allowed,
            retry_after_s=retry_after_s,
            remaining=int(res[2]),
            limit=int(res[3]),
            reset_epoch_s=now_s + retry_after_s,
        )


class RateLimiter:
    def __init__(
        self,
        store: RateStore,
        policies: Dict[str, Policy],
        *,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.policies = policies
        self.enabled = enabled

    def check(self, bucket: str, identity: str, now_s: Optional[float] = None) -> Decision:
        """
        Consume one request from ``identity``'s budget in ``bucket``.

        Raises:
            RateLimitedException: budget exhausted; carries the retry delay
        """
        policy = self.policies[bucket]
        if not self.enabled:
            return Decision(True, 0.0, policy.burst, policy.burst + 1, 0.0)

        now_s = time.time() if now_s is None else now_s
        decision = self.store.decide(
            f"{NAMESPACE}:{bucket}:{identity}", now_s, policy.rate_per_min, policy.burst
        )
        if decision.allowed:
            prometheus_metrics.record_rate_limit_decision(bucket, "allow")
            return decision

        prometheus_metrics.record_rate_limit_decision(bucket, "block")
        logger.info(
            "Rate limit exceeded",
            extra={"bucket": bucket, "identity": identity, "retry_after": decision.retry_after_s},
        )
        raise RateLimitedException(decision.retry_after_s, limit=decision.limit, bucket=bucket)


def build_rate_limiter(config: Settings) -> Tuple[RateLimiter, str]:
    """Limiter for the application; redis-backed when a redis URL is configured."""
    if config.redis_url:
        store: RateStore = RedisRateStore.from_url(config.redis_url)
        backend = "redis"
    else:
        store = InMemoryRateStore()
        backend = "memory"
    limiter = RateLimiter(store, policies_from_settings(config), enabled=config.rate_limit_enabled)
    return limiter, backend
