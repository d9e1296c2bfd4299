from __future__ import annotations

from contextlib import contextmanager
from datetime import date
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from app.core.config import settings
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def provider_slot_lock_key(provider_id: str, booking_date: date) -> str:
    return f"provider:{provider_id}:{booking_date.isoformat()}"


def settlement_lock_key(booking_id: str) -> str:
    return f"booking:{booking_id}:settlement"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,
            )
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_lock(key: str, ttl_s: Optional[int] = None) -> bool:
    """
    Try to take a short-lived Redis mutex.

    Fails open (returns True) when Redis is unreachable; the database
    exclusion constraint and status preconditions still guard correctness.
    """
    ttl = ttl_s or settings.booking_lock_ttl_seconds
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        logger.warning("booking_lock_redis_unavailable", extra={"lock_key": key})
        return True
    try:
        acquired = bool(client.set(_namespaced_key(key), str(time.time()), nx=True, ex=ttl))
        prometheus_metrics.record_booking_lock("acquire", "success" if acquired else "blocked")
        return acquired
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        logger.warning(
            "booking_lock_acquire_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True


def release_lock(key: str) -> None:
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_namespaced_key(key))
        prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def booking_lock_sync(key: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    acquired = acquire_lock(key, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_lock(key)
