"""
Fast shared store: the low-latency key-value store behind rate-limit
counters, the access-token denylist and client revocation markers.

Two backends share one small interface:
- RedisFastStore: the production backend, shared by every worker and instance
- MemoryFastStore: a dict guarded by a lock, for development and tests only
  (single process, data lost on restart)

Every method is a blocking call bounded by the configured timeout. Any
backend failure is raised as StoreUnavailable; callers never see a redis
exception.
"""
from __future__ import annotations

import logging
import threading
import time
from functools import wraps
from typing import Callable, Optional, Tuple

import redis
from redis.exceptions import RedisError

from authority.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class FastStore:
    """Interface shared by the fast store backends."""

    def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Atomically count one hit in the window stored at `key`.

        The first hit creates the key with a TTL of `window_seconds`; later
        hits only increment it. Returns (count after increment, seconds left).
        """
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


def _guarded(fn):
    """Translate redis failures (including timeouts) into StoreUnavailable."""

    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except RedisError as exc:
            logger.error("Fast store call %s failed: %s", fn.__name__, exc)
            raise StoreUnavailable(reason=f"fast store {fn.__name__}: {exc}") from exc

    return wrapper


class RedisFastStore(FastStore):
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 0.5) -> "RedisFastStore":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True,
        )
        return cls(client)

    @_guarded
    def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        # SET NX only creates the key (with its TTL) on the first hit of a
        # window; INCR keeps the TTL. MULTI makes the three commands one step.
        with self._client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            _, count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self._client.expire(key, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)

    @_guarded
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(key, value, ex=max(1, int(ttl_seconds)))

    @_guarded
    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    @_guarded
    def exists(self, key: str) -> bool:
        return bool(self._client.exists(key))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False


class MemoryFastStore(FastStore):
    """In-process store with per-key expiry. Not shared across processes."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[tuple[str, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        with self._lock:
            now = self._clock()
            entry = self._live(key)
            if entry is None:
                expires_at = now + window_seconds
                count = 1
            else:
                count = int(entry[0]) + 1
                expires_at = entry[1]
            self._data[key] = (str(count), expires_at)
            return count, max(1, int(round(expires_at - now)))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def ping(self) -> bool:
        return True


def create_fast_store(kind: str, url: str | None = None, timeout_seconds: float = 0.5) -> FastStore:
    """Build the fast store selected by configuration ("redis" or "memory")."""
    kind = (kind or "redis").lower()
    if kind == "memory":
        logger.warning("Using in-memory fast store: state is not shared across processes")
        return MemoryFastStore()
    if kind == "redis":
        if not url:
            raise ValueError("REDIS_URL is required when FAST_STORE=redis")
        return RedisFastStore.from_url(url, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown fast store backend: {kind}")
