from collections.abc import Callable
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from delivery_queue.config import Settings
from delivery_queue.models import QueueItem, utcnow


class MockPipeline:
    """Buffers commands and runs them against the mock client on execute()."""

    def __init__(self, client: "MockRedisClient"):
        self._client = client
        self._commands: list = []

    async def __aenter__(self) -> "MockPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._commands.clear()

    def __getattr__(self, name: str):
        method = getattr(self._client, name)

        def command(*args, **kwargs):
            self._commands.append((method, args, kwargs))
            return self

        return command

    async def execute(self) -> list:
        results = [await method(*args, **kwargs) for method, args, kwargs in self._commands]
        self._commands.clear()
        return results


class MockRedisClient:
    """Mock async Redis client for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self._ttls: dict[str, int] = {}
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value, nx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return None
        self._store[key] = str(value)
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def mget(self, keys: list[str]) -> list[str | None]:
        return [self._store.get(key) for key in keys]

    async def incr(self, key: str) -> int:
        return await self.incrby(key, 1)

    async def incrby(self, key: str, amount: int) -> int:
        value = int(self._store.get(key, 0)) + amount
        self._store[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._ttls[key] = seconds
        return key in self._store or key in self._lists

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._store.pop(key, None) is not None or self._lists.pop(key, None):
                deleted += 1
            self._ttls.pop(key, None)
        return deleted

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        stop = len(items) if end == -1 else end + 1
        return list(items[start:stop])

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self._lists.get(key, [])
        removed = 0
        while value in items and (count == 0 or removed < abs(count)):
            items.remove(value)
            removed += 1
        return removed

    async def llen(self, key: str) -> int:
        return len(self._lists.get(key, []))

    async def eval(self, script: str, numkeys: int, *keys_and_args: str):
        key, token = keys_and_args[0], keys_and_args[1]
        if self._store.get(key) != token:
            return 0
        if "pexpire" in script:
            self._ttls[key] = int(keys_and_args[2]) // 1000
            return 1
        return await self.delete(key)

    def pipeline(self, transaction: bool = True) -> MockPipeline:
        return MockPipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FailingRedisClient:
    """Redis client whose every command fails as if the server were down."""

    def __getattr__(self, name: str):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return fail

    def pipeline(self, transaction: bool = True):
        raise RedisConnectionError("Connection refused")


@pytest.fixture
def mock_redis():
    return MockRedisClient()


@pytest.fixture
def failing_redis():
    return FailingRedisClient()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        REDIS_URL="redis://localhost:6379/0",
        RECEIVER_WEBHOOK_URL="https://receiver.test/api/intake",
        RECEIVER_WEBHOOK_SECRET="receiver-secret",
        ALERT_WEBHOOK_URL=None,
        ALERT_MAX_ATTEMPTS=1,
        CRON_SECRET=None,
        SCHEDULER_ITEM_DELAY_SECONDS=0,
        LOG_JSON_FORMAT=False,
    )


@pytest.fixture
def make_item() -> Callable[..., QueueItem]:
    """Factory for queue items that are due now unless overridden."""

    def factory(**overrides) -> QueueItem:
        now = utcnow()
        values = {
            "id": "dlq-1700000000000-abc123",
            "source_record_id": "rec123",
            "correlation_id": "session-1",
            "payload": {"sessionId": "session-1", "data": {"weight": 180}},
            "attempts": 1,
            "first_failed_at": now - timedelta(minutes=5),
            "last_failed_at": now - timedelta(minutes=5),
            "last_error": "HTTP 502: Bad Gateway",
            "next_retry_at": now - timedelta(seconds=1),
        }
        values.update(overrides)
        return QueueItem(**values)

    return factory
