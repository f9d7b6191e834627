from unittest.mock import Mock

import pytest
import redis

from coachdesk.core.exceptions import RateLimitedException
from coachdesk.ratelimit.limiter import (
    InMemoryRateStore,
    Policy,
    RateLimiter,
    RedisRateStore,
    build_rate_limiter,
    policies_from_settings,
)

POLICIES = {"reservation": Policy(rate_per_min=6, burst=3)}


def test_limiter_raises_with_retry_after():
    limiter = RateLimiter(InMemoryRateStore(), POLICIES)
    for _ in range(4):
        limiter.check("reservation", "ip:1.1.1.1", now_s=1_000.0)

    with pytest.raises(RateLimitedException) as exc_info:
        limiter.check("reservation", "ip:1.1.1.1", now_s=1_000.0)

    exc = exc_info.value
    assert exc.code == "RATE_LIMITED"
    assert exc.retry_after_seconds == pytest.approx(10.0)
    assert exc.headers()["Retry-After"] == "10"
    assert exc.to_http_exception().status_code == 429


def test_identities_have_separate_budgets():
    limiter = RateLimiter(InMemoryRateStore(), POLICIES)
    for _ in range(4):
        limiter.check("reservation", "ip:1.1.1.1", now_s=1_000.0)

    decision = limiter.check("reservation", "ip:2.2.2.2", now_s=1_000.0)

    assert decision.allowed


def test_disabled_limiter_always_allows():
    limiter = RateLimiter(InMemoryRateStore(), POLICIES, enabled=False)

    for _ in range(20):
        assert limiter.check("reservation", "ip:1.1.1.1", now_s=1_000.0).allowed


def test_friend_code_policy_allows_configured_attempts_per_hour(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "friend_code_rate_per_hour", 15)
    limiter = RateLimiter(InMemoryRateStore(), policies_from_settings(test_settings))
    for _ in range(15):
        limiter.check("friend_code", "ip:1.1.1.1", now_s=0.0)

    with pytest.raises(RateLimitedException) as exc_info:
        limiter.check("friend_code", "ip:1.1.1.1", now_s=0.0)

    assert exc_info.value.retry_after_seconds == pytest.approx(240.0)


def test_redis_store_maps_script_result():
    client = Mock()
    client.eval.return_value = [0, 10_000, 0, 4]

    decision = RedisRateStore(client).decide("coachdesk:rl:reservation:ip:1", 1_000.0, 6, 3)

    assert not decision.allowed
    assert decision.retry_after_s == pytest.approx(10.0)
    assert decision.limit == 4
    args = client.eval.call_args[0]
    assert args[1:] == (1, "coachdesk:rl:reservation:ip:1", 1_000_000, 10_000, 3)


def test_redis_store_fails_open():
    client = Mock()
    client.eval.side_effect = redis.ConnectionError("down")

    decision = RedisRateStore(client).decide("key", 1_000.0, 6, 3)

    assert decision.allowed


def test_build_uses_memory_store_without_redis(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "redis_url", None)

    limiter, backend = build_rate_limiter(test_settings)

    assert backend == "memory"
    assert set(limiter.policies) == {"reservation", "friend_code"}
