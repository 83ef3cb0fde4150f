"""
Keyed locks for the scoring pipeline

Serializes work that must not interleave: one completion pass per game,
one aggregation per user/season, one ranking per leaderboard scope.
The "memory" backend only covers threads of a single process; the
"redis" backend covers every worker sharing the Redis instance.
"""

import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)

LOCK_PREFIX = "pickem:lock:"


class LockTimeout(Exception):
    """Raised when a keyed lock could not be acquired in time"""

    def __init__(self, key, waited):
        super().__init__(f"Timed out after {waited}s waiting for lock '{key}'")
        self.key = key
        self.waited = waited


class MemoryLockBackend:
    """Per-process registry of threading locks, one per key"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key, timeout, wait_timeout):
        lock = self._lock_for(key)
        if not lock.acquire(timeout=wait_timeout):
            raise LockTimeout(key, wait_timeout)
        try:
            yield
        finally:
            lock.release()


class RedisLockBackend:
    """Distributed locks backed by redis-py's Lock"""

    def __init__(self, redis_url):
        import redis

        self.client = redis.Redis.from_url(redis_url)

    @contextmanager
    def hold(self, key, timeout, wait_timeout):
        from redis.exceptions import LockError

        lock = self.client.lock(
            f"{LOCK_PREFIX}{key}", timeout=timeout, blocking_timeout=wait_timeout
        )
        if not lock.acquire():
            raise LockTimeout(key, wait_timeout)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Lock expired while held; the next holder already owns the key
                logger.warning(f"Lock '{key}' expired before release (timeout={timeout}s)")


class LockManager:
    """Flask extension handing out keyed locks from the configured backend"""

    def __init__(self, app=None):
        self.backend = None
        self.timeout = 300
        self.wait_timeout = 30.0

        if app:
            self.init_app(app)

    def init_app(self, app):
        backend_name = app.config.get("LOCK_BACKEND", "memory").lower()
        self.timeout = app.config.get("LOCK_TIMEOUT", 300)
        self.wait_timeout = app.config.get("LOCK_WAIT_TIMEOUT", 30.0)

        if backend_name == "redis":
            self.backend = RedisLockBackend(app.config["LOCK_REDIS_URL"])
        elif backend_name == "memory":
            self.backend = MemoryLockBackend()
        else:
            raise ValueError(f"Unknown LOCK_BACKEND: {backend_name}")

        app.extensions["pickem_locks"] = self

    def hold(self, key, wait_timeout=None):
        """Context manager holding the lock for ``key``"""
        if self.backend is None:
            raise RuntimeError("LockManager not initialized. Call init_app() first.")
        return self.backend.hold(
            key,
            timeout=self.timeout,
            wait_timeout=self.wait_timeout if wait_timeout is None else wait_timeout,
        )


def game_lock_key(game_id):
    return f"game:{game_id}"


def aggregate_lock_key(user_id, season):
    return f"aggregate:{season}:{user_id}"


def rank_lock_key(season, week=None):
    if week is None:
        return f"rank:{season}:season"
    return f"rank:{season}:week:{week}"
