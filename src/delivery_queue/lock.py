"""Short-lived exclusive lock for scheduler runs.

The lock is a random token stored with ``SET NX EX``. Release deletes the key
only if it still holds our token, so a run that outlived its TTL can't free a
lock taken over by the next run. The owner refreshes the TTL while it works;
the TTL alone frees a lock left by a crashed run.
"""

import uuid
from dataclasses import dataclass

import redis.asyncio as redis

from delivery_queue.logging import get_logger
from delivery_queue.store import STORE_ERRORS

logger = get_logger(__name__)

RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
else
    return 0
end
"""


@dataclass(frozen=True)
class LockHandle:
    key: str
    token: str
    ttl_seconds: int


class LockUnavailable:
    """Marker returned when the store could not be asked about the lock."""

    def __bool__(self) -> bool:
        return False


LOCK_UNAVAILABLE = LockUnavailable()


class RunLock:
    def __init__(self, redis_client: redis.Redis | None, key: str, ttl_seconds: int):
        self.redis = redis_client
        self.key = key
        self.ttl_seconds = ttl_seconds

    async def acquire(self) -> LockHandle | LockUnavailable | None:
        """Try to take the lock.

        Returns:
            LockHandle when acquired, None when another run holds it,
            LOCK_UNAVAILABLE when the store is missing or unreachable
        """
        if self.redis is None:
            return LOCK_UNAVAILABLE

        token = uuid.uuid4().hex
        try:
            acquired = await self.redis.set(
                self.key, token, nx=True, ex=self.ttl_seconds
            )
        except STORE_ERRORS as e:
            logger.warning("Run lock unavailable", key=self.key, error=str(e))
            return LOCK_UNAVAILABLE

        if not acquired:
            return None
        return LockHandle(key=self.key, token=token, ttl_seconds=self.ttl_seconds)

    async def release(self, handle: LockHandle) -> bool:
        if self.redis is None:
            return False
        try:
            released = await self.redis.eval(RELEASE_SCRIPT, 1, handle.key, handle.token)
        except STORE_ERRORS as e:
            logger.warning("Run lock release failed", key=handle.key, error=str(e))
            return False
        return bool(released)

    async def extend(self, handle: LockHandle) -> bool:
        """Reset the TTL of a lock we still own.

        Returns:
            False when the lock expired, was taken over or the store failed
        """
        if self.redis is None:
            return False
        try:
            extended = await self.redis.eval(
                EXTEND_SCRIPT, 1, handle.key, handle.token, handle.ttl_seconds * 1000
            )
        except STORE_ERRORS as e:
            logger.warning("Run lock refresh failed", key=handle.key, error=str(e))
            return False
        return bool(extended)
