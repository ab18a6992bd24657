import fnmatch
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import CacheConfig

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class CacheError(Exception):
    """The cache backend could not complete an operation."""


class CacheBackend(ABC):
    """Minimal key/value surface the sync layer needs."""

    @abstractmethod
    def ping(self) -> bool:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        pass

    @abstractmethod
    def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set only if absent; True when this call created the key."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def keys(self, pattern: str) -> List[str]:
        pass

    @abstractmethod
    def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete `key` only while it still holds `value`."""

    def close(self) -> None:
        pass


class MemoryCache(CacheBackend):
    """
    In-process backend with per-key expiry. Expired entries are dropped
    when read; writes also sweep the whole table at most once per
    `sweep_interval` seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 30.0):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        """Entries held, including expired ones not yet swept."""
        with self._lock:
            return len(self._data)

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval
        expired = [k for k, (_, expires_at) in self._data.items()
                   if expires_at is not None and now >= expires_at]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))

    def _alive(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._alive(key)

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        with self._lock:
            self._sweep()
            self._data[key] = (value, self._clock() + ttl_seconds)

    def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            self._sweep()
            if self._alive(key) is not None:
                return False
            self._data[key] = (value, self._clock() + ttl_seconds)
            return True

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._alive(key) is not None:
                    removed += 1
                self._data.pop(key, None)
        return removed

    def keys(self, pattern: str) -> List[str]:
        with self._lock:
            return [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._alive(k) is not None]

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._alive(key) != value:
                return False
            del self._data[key]
            return True


class RedisCache(CacheBackend):
    """Redis backend; every failure surfaces as CacheError."""

    def __init__(self, url: str, socket_timeout: float = 2.0):
        import redis

        self._redis_errors = (redis.RedisError,)
        self._client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )

    def _call(self, name: str, *args, **kwargs):
        try:
            return getattr(self._client, name)(*args, **kwargs)
        except self._redis_errors as e:
            raise CacheError(f"redis {name} failed: {e}") from e

    def ping(self) -> bool:
        return bool(self._call("ping"))

    def get(self, key: str) -> Optional[str]:
        return self._call("get", key)

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._call("setex", key, ttl_seconds, value)

    def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(self._call("set", key, value, nx=True, ex=ttl_seconds))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._call("delete", *keys))

    def keys(self, pattern: str) -> List[str]:
        try:
            return list(self._client.scan_iter(match=pattern))
        except self._redis_errors as e:
            raise CacheError(f"redis scan failed: {e}") from e

    def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(self._call("eval", RELEASE_SCRIPT, 1, key, value))

    def close(self) -> None:
        self._client.close()


def create_cache(config: CacheConfig) -> CacheBackend:
    if config.backend == "redis":
        return RedisCache(config.redis_url, config.socket_timeout_seconds)
    if config.backend == "memory":
        return MemoryCache()
    raise ValueError(f"Unknown cache backend '{config.backend}'")
