"""Per-schedule lock managers with Protocol pattern for dependency injection.

Provides RedisLockManager (shared across processes) and InProcessLockManager
(single process fallback). Acquisition never blocks: a caller that cannot get
the lock treats its trigger as coalesced into the run already in progress.
"""

import logging
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

import redis

from ..config import settings

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Push the expiry out only if the key still holds our token
_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


class ScheduleLockManager(Protocol):
    """Lock manager interface."""

    def acquire(self, key: str) -> str | None: ...
    def extend(self, key: str, token: str) -> bool: ...
    def release(self, key: str, token: str) -> None: ...


class InProcessLockManager:
    """Token locks held in a dict, expiring after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.schedule_lock_ttl_seconds
        self._guard = threading.Lock()
        self._held: dict[str, tuple[str, float]] = {}

    def acquire(self, key: str) -> str | None:
        now = time.monotonic()
        with self._guard:
            current = self._held.get(key)
            if current is not None and current[1] > now:
                return None
            token = uuid.uuid4().hex
            self._held[key] = (token, now + self._ttl)
            return token

    def extend(self, key: str, token: str) -> bool:
        now = time.monotonic()
        with self._guard:
            current = self._held.get(key)
            if current is None or current[0] != token or current[1] <= now:
                return False
            self._held[key] = (token, now + self._ttl)
            return True

    def release(self, key: str, token: str) -> None:
        with self._guard:
            current = self._held.get(key)
            if current is not None and current[0] == token:
                del self._held[key]


class RedisLockManager:
    """``SET NX EX`` locks in Redis, released with a token check."""

    def __init__(self, redis_url: str, ttl_seconds: int | None = None, prefix: str = "alert-engine:lock:") -> None:
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._client.ping()
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.schedule_lock_ttl_seconds
        self._prefix = prefix

    def acquire(self, key: str) -> str | None:
        token = uuid.uuid4().hex
        try:
            acquired = self._client.set(self._prefix + key, token, nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.exception("Redis lock acquire failed for %s, treating as held", key)
            return None
        return token if acquired else None

    def extend(self, key: str, token: str) -> bool:
        try:
            extended = self._client.eval(_EXTEND_SCRIPT, 1, self._prefix + key, token, self._ttl * 1000)
        except redis.RedisError:
            logger.warning("Redis lock extend failed for %s", key)
            return False
        return bool(extended)

    def release(self, key: str, token: str) -> None:
        try:
            self._client.eval(_RELEASE_SCRIPT, 1, self._prefix + key, token)
        except redis.RedisError:
            logger.warning("Redis lock release failed for %s, it will expire after %ds", key, self._ttl)


@dataclass
class Lease:
    """A held (or refused) lock. Long runs call ``renew`` to keep it."""

    manager: ScheduleLockManager
    key: str
    token: str | None

    @property
    def acquired(self) -> bool:
        return self.token is not None

    def renew(self) -> bool:
        """Restart the TTL. False means the lock expired and may belong to someone else."""
        if self.token is None:
            return False
        return self.manager.extend(self.key, self.token)


@contextmanager
def hold(manager: ScheduleLockManager, key: str) -> Iterator[Lease]:
    """Yield a Lease for ``key``; ``lease.acquired`` is False if someone else has it."""
    lease = Lease(manager, key, manager.acquire(key))
    try:
        yield lease
    finally:
        if lease.token is not None:
            manager.release(key, lease.token)


def create_lock_manager() -> ScheduleLockManager:
    """Factory: create the appropriate lock manager based on configuration."""
    if not settings.redis_url:
        return InProcessLockManager()
    try:
        return RedisLockManager(settings.redis_url)
    except redis.RedisError:
        logger.warning("Redis unavailable at startup, falling back to in-process schedule locks")
        return InProcessLockManager()
