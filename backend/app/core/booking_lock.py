from __future__ import annotations

from contextlib import contextmanager
from datetime import date
import logging
import threading
import time
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from redis import Redis

from app.core.config import settings
from app.core.exceptions import TransientFailureException
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_LOCAL_LOCKS: Dict[str, threading.RLock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_URL: Optional[str] = None
_SYNC_REDIS_LOCK = threading.Lock()

_REDIS_POLL_INTERVAL_S = 0.05


def slot_lock_key(instructor_id: str, booking_date: date) -> str:
    """Key serializing reservations of one instructor on one date."""
    return f"reservation:{instructor_id}:{booking_date.isoformat()}"


def ledger_lock_key(user_id: str) -> str:
    return f"ledger:{user_id}"


def _namespaced_key(key: str) -> str:
    return f"{settings.booking_lock_namespace}:lock:{key}"


def _local_lock(key: str) -> threading.RLock:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _LOCAL_LOCKS[key] = lock
        return lock


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS, _SYNC_REDIS_URL
    redis_url = settings.booking_lock_redis_url
    if not redis_url:
        return None
    if _SYNC_REDIS is not None and _SYNC_REDIS_URL == redis_url:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None and _SYNC_REDIS_URL == redis_url:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_sync_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        _SYNC_REDIS_URL = redis_url
        return _SYNC_REDIS


def _acquire_redis_lock(client: Redis, key: str, ttl_s: int, deadline: float) -> bool:
    """Poll SET NX EX until acquired or the deadline passes."""
    namespaced = _namespaced_key(key)
    while True:
        try:
            if client.set(namespaced, str(time.time()), nx=True, ex=ttl_s):
                return True
        except Exception as exc:
            prometheus_metrics.record_booking_lock("acquire", "error")
            logger.warning(
                "booking_lock_redis_acquire_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            # Local lock and database constraints still hold
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(_REDIS_POLL_INTERVAL_S)


def _release_redis_lock(client: Redis, key: str) -> None:
    try:
        deleted = client.delete(_namespaced_key(key))
        prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_redis_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def reservation_lock(
    keys: Sequence[str],
    wait_s: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[None]:
    """
    Hold every key in ``keys`` for the duration of the block.

    Keys are taken in the order given; callers must use a consistent order
    (slot key before ledger key). A process-local lock is always taken and a
    Redis lock is added when ``booking_lock_redis_url`` is configured.

    Raises:
        TransientFailureException: if a key cannot be obtained within ``wait_s``
    """
    wait = settings.booking_lock_wait_seconds if wait_s is None else wait_s
    ttl = settings.booking_lock_ttl_seconds if ttl_s is None else ttl_s
    started = time.monotonic()
    deadline = started + wait
    client = _get_sync_redis()
    if settings.booking_lock_redis_url and client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")

    held: List[Tuple[str, threading.RLock, bool]] = []
    try:
        for key in keys:
            local = _local_lock(key)
            remaining = max(deadline - time.monotonic(), 0.0)
            if not local.acquire(timeout=remaining):
                prometheus_metrics.record_booking_lock("acquire", "timeout")
                logger.warning("booking_lock_timeout", extra={"lock_key": key, "wait_s": wait})
                raise TransientFailureException(details={"lock_key": key})
            redis_held = False
            if client is not None:
                if not _acquire_redis_lock(client, key, ttl, deadline):
                    local.release()
                    prometheus_metrics.record_booking_lock("acquire", "blocked")
                    logger.warning(
                        "booking_lock_redis_timeout", extra={"lock_key": key, "wait_s": wait}
                    )
                    raise TransientFailureException(details={"lock_key": key})
                redis_held = True
            held.append((key, local, redis_held))
            prometheus_metrics.record_booking_lock("acquire", "success")
        prometheus_metrics.observe_booking_lock_wait(time.monotonic() - started)
        yield
    finally:
        for key, local, redis_held in reversed(held):
            if redis_held and client is not None:
                _release_redis_lock(client, key)
            local.release()
            if not redis_held:
                prometheus_metrics.record_booking_lock("release", "success")
