"""
Cross-process slot mutex backed by redis.

The lock only narrows the window in which two workers re-check the same
slot; the database constraints on booked exceptions stay authoritative.
When redis is unreachable the lock fails open.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import threading
from typing import Iterator, Optional, Tuple

from redis import Redis
import ulid

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _lock_key(slot_instant: datetime) -> str:
    return f"coachdesk:lock:slot:{ensure_utc(slot_instant).strftime('%Y%m%dT%H%M')}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    if not settings.redis_url:
        return None
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("slot_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_slot_lock(
    slot_instant: datetime, ttl_s: Optional[int] = None, client: Optional[Redis] = None
) -> Tuple[bool, Optional[str]]:
    """
    Try to take the mutex for one slot.

    Returns ``(proceed, token)``. ``token`` identifies this holder and is None
    when the lock failed open, in which case there is nothing to release.
    """
    redis_client = client or _get_sync_redis()
    if redis_client is None:
        prometheus_metrics.record_slot_lock("acquire", "redis_unavailable")
        return True, None
    token = str(ulid.ULID())
    try:
        acquired = bool(
            redis_client.set(
                _lock_key(slot_instant),
                token,
                nx=True,
                ex=ttl_s or settings.slot_lock_ttl_seconds,
            )
        )
    except Exception as exc:
        prometheus_metrics.record_slot_lock("acquire", "error")
        logger.warning(
            "slot_lock_acquire_failed",
            extra={
                "slot": ensure_utc(slot_instant).isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True, None
    prometheus_metrics.record_slot_lock("acquire", "success" if acquired else "blocked")
    return acquired, token if acquired else None


def release_slot_lock(slot_instant: datetime, token: str, client: Optional[Redis] = None) -> None:
    """
    Delete the key only while it still holds ``token``.

    Once the TTL has lapsed the key may belong to another worker.
    """
    redis_client = client or _get_sync_redis()
    if redis_client is None:
        return
    try:
        deleted = redis_client.eval(_RELEASE_LUA, 1, _lock_key(slot_instant), token)
        prometheus_metrics.record_slot_lock("release", "success" if deleted else "not_owner")
    except Exception as exc:
        prometheus_metrics.record_slot_lock("release", "error")
        logger.warning(
            "slot_lock_release_failed",
            extra={"slot": ensure_utc(slot_instant).isoformat(), "error": str(exc)},
        )


@contextmanager
def slot_lock(
    slot_instant: datetime, ttl_s: Optional[int] = None, client: Optional[Redis] = None
) -> Iterator[bool]:
    """Yield whether the mutex was taken; disabled locks always yield True."""
    if not settings.slot_lock_enabled and client is None:
        yield True
        return
    acquired, token = acquire_slot_lock(slot_instant, ttl_s=ttl_s, client=client)
    try:
        yield acquired
    finally:
        if token is not None:
            release_slot_lock(slot_instant, token, client=client)
