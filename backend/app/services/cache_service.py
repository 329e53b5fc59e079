# backend/app/services/cache_service.py
"""
Cache Service for ClassBook

Centralizes caching of computed slot lists with key management,
invalidation by course and hit/miss monitoring.

Entries live in an in-process TTL store, or in Redis when
``slot_cache_redis_url`` is configured. The cache is advisory: the
reservation path never reads from it.
"""

from datetime import date, datetime, timedelta
from enum import Enum
import fnmatch
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for the Redis backend.

    Prevents cascading failures when the cache server is unavailable.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type[BaseException] = RedisError,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self._failure_count: int = 0
        self._last_failure_time: Optional[datetime] = None
        self._state: CircuitState = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                time_since_failure = (datetime.now() - self._last_failure_time).total_seconds()
                if time_since_failure >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute function with circuit breaker protection.

        Returns:
            Function result or None if circuit is open
        """
        if self.state == CircuitState.OPEN:
            logger.warning(f"Circuit breaker is OPEN, skipping {func.__name__}")
            return None

        try:
            result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.expected_exception:
            self._on_failure()
            if self.state == CircuitState.CLOSED:
                raise
            return None

    def _on_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker recovered, closing circuit")

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now()

            if self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheKeyBuilder:
    """Standardized cache key generation."""

    PREFIXES = {
        "slots": "slots",
    }

    @staticmethod
    def build(*parts: Union[str, int, date]) -> str:
        """
        Build a cache key from parts.

        Examples:
            build('slots', 'c1', date(2025, 6, 1)) -> 'slots:c1:2025-06-01'
        """
        formatted_parts = [
            part.isoformat() if isinstance(part, date) else str(part) for part in parts
        ]

        if parts and isinstance(parts[0], str) and parts[0] in CacheKeyBuilder.PREFIXES:
            formatted_parts[0] = CacheKeyBuilder.PREFIXES[parts[0]]

        return ":".join(formatted_parts)


class CacheService(BaseService):
    """
    Caching service with a Redis backend and an in-memory fallback.

    Features:
    - JSON serialization for Redis values
    - Per-entry TTL
    - Pattern invalidation
    - Hit/miss statistics
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        redis_url: Optional[str] = None,
        default_ttl: Optional[int] = None,
    ):
        super().__init__(db=None)  # type: ignore[arg-type]
        self.logger = logging.getLogger(__name__)
        self.circuit_breaker = CircuitBreaker()
        self.key_builder = CacheKeyBuilder()
        self.default_ttl = settings.slot_cache_ttl_seconds if default_ttl is None else default_ttl

        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self._memory_lock = threading.Lock()

        self.redis: Optional[Redis] = redis_client
        if self.redis is None and redis_url:
            self._setup_redis_connection(redis_url)

        self._stats: Dict[str, int] = self._initialize_stats()

    def _setup_redis_connection(self, redis_url: str) -> None:
        """Connect to Redis, falling back to the in-memory store."""
        try:
            self.redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self.redis.ping()
            logger.info("Connected to Redis slot cache")
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Redis not available: {e}. Using in-memory fallback.")
            self.redis = None

    def _initialize_stats(self) -> Dict[str, int]:
        return {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    # Core Cache Operations

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        """Get value from cache with circuit breaker protection."""
        redis_client = self.redis

        def _get_from_redis() -> Optional[Any]:
            assert redis_client is not None
            value = redis_client.get(key)
            if value is not None:
                return json.loads(value)
            return None

        try:
            if redis_client is not None:
                value = self.circuit_breaker.call(_get_from_redis)
            else:
                value = self._memory_get(key)
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

        if value is None:
            self._stats["misses"] += 1
        else:
            self._stats["hits"] += 1
        return value

    def _memory_get(self, key: str) -> Optional[Any]:
        with self._memory_lock:
            if key not in self._memory_cache:
                return None
            expires_at = self._memory_expiry.get(key)
            if expires_at is not None and datetime.now() >= expires_at:
                del self._memory_cache[key]
                del self._memory_expiry[key]
                return None
            return self._memory_cache[key]

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with circuit breaker protection."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False
        redis_client = self.redis

        try:
            if redis_client is not None:
                serialized = json.dumps(value, default=str)
                result = self.circuit_breaker.call(redis_client.setex, key, ttl, serialized)
                if not result:
                    return False
            else:
                with self._memory_lock:
                    self._memory_cache[key] = value
                    self._memory_expiry[key] = datetime.now() + timedelta(seconds=ttl)
            self._stats["sets"] += 1
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        redis_client = self.redis
        try:
            if redis_client is not None:
                deleted = bool(self.circuit_breaker.call(redis_client.delete, key))
            else:
                with self._memory_lock:
                    deleted = self._memory_cache.pop(key, None) is not None
                    self._memory_expiry.pop(key, None)
            if deleted:
                self._stats["deletes"] += 1
            return deleted
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        try:
            redis_client = self.redis
            if redis_client is not None:
                count = sum(
                    1 for key in redis_client.scan_iter(match=pattern) if redis_client.delete(key)
                )
            else:
                with self._memory_lock:
                    keys = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
                    for key in keys:
                        self._memory_cache.pop(key, None)
                        self._memory_expiry.pop(key, None)
                count = len(keys)
            self._stats["deletes"] += count
            logger.debug(f"Deleted {count} keys matching pattern: {pattern}")
            return count
        except Exception as e:
            logger.error(f"Cache delete pattern error: {e}")
            self._stats["errors"] += 1
            return 0

    def clear(self) -> None:
        """Drop every in-memory entry."""
        with self._memory_lock:
            self._memory_cache.clear()
            self._memory_expiry.clear()

    # Slot helpers

    def slot_key(self, course_id: str, start_date: date, end_date: date) -> str:
        return self.key_builder.build("slots", course_id, start_date, end_date)

    def get_slots(
        self, course_id: str, start_date: date, end_date: date
    ) -> Optional[List[Dict[str, Any]]]:
        cached = self.get(self.slot_key(course_id, start_date, end_date))
        prometheus_metrics.record_slot_cache("miss" if cached is None else "hit")
        return cached

    def cache_slots(
        self, course_id: str, start_date: date, end_date: date, slots: List[Dict[str, Any]]
    ) -> bool:
        return self.set(self.slot_key(course_id, start_date, end_date), slots)

    def invalidate_course_slots(self, course_id: str) -> int:
        """Drop every cached slot range of a course."""
        return self.delete_pattern(self.key_builder.build("slots", course_id, "*"))

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics including circuit breaker state."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0
        return {
            **self._stats,
            "hit_rate": f"{hit_rate:.2f}%",
            "total_requests": total_requests,
            "backend": "redis" if self.redis is not None else "memory",
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker._failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }


_cache_service: Optional[CacheService] = None
_cache_service_lock = threading.Lock()


def get_cache_service() -> CacheService:
    """
    Process-wide cache service.

    One instance is shared so in-memory entries survive across requests.
    """
    global _cache_service
    if _cache_service is None:
        with _cache_service_lock:
            if _cache_service is None:
                _cache_service = CacheService(redis_url=settings.slot_cache_redis_url)
    return _cache_service
