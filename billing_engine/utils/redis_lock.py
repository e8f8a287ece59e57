import threading
from contextlib import contextmanager

from billing_engine.errors import LockNotAcquired


class RedisLockProvider:
    """Distributed, non-blocking locks backed by redis-py's Lock."""

    def __init__(self, client, ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @contextmanager
    def lock(self, key: str):
        lock = self.client.lock(key, timeout=self.ttl)
        acquired = lock.acquire(blocking=False)
        if not acquired:
            raise LockNotAcquired("Duplicate execution prevented", lock_key=key)

        try:
            yield
        finally:
            lock.release()


class MemoryLockProvider:
    """Process-local locks for tests and single-process development."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held = set()

    @contextmanager
    def lock(self, key: str):
        with self._guard:
            if key in self._held:
                raise LockNotAcquired("Duplicate execution prevented", lock_key=key)
            self._held.add(key)

        try:
            yield
        finally:
            with self._guard:
                self._held.discard(key)


def build_lock_provider(config, redis_client=None):
    backend = config.get("BILLING_LOCK_BACKEND", "redis")
    if backend == "memory":
        return MemoryLockProvider()
    if redis_client is None:
        raise RuntimeError("Redis lock backend selected but no Redis client is configured")
    return RedisLockProvider(redis_client, ttl=config.get("BILLING_LOCK_TTL", 300))
