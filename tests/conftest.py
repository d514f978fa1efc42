"""
Shared fixtures: an in-memory stand-in for the Redis client.
"""

import asyncio
import os

# Keep the event log out of the working tree during tests
os.environ.setdefault("SCRAPEGUARD_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest

from scrapeguard.storage.redis_client import redis_manager


class InMemoryRedis:
    """The subset of redis.asyncio.Redis the stores use."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def ping(self):
        return True


class YieldingRedis(InMemoryRedis):
    """Gives up the event loop inside get/delete, like a real round trip."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def delete(self, *keys):
        await asyncio.sleep(0)
        return await super().delete(*keys)


class BrokenRedis:
    """Every call fails as if the server went away."""

    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis down")

    async def delete(self, *keys):
        raise ConnectionError("redis down")

    async def ping(self):
        raise ConnectionError("redis down")


@pytest.fixture
def fake_redis():
    """Install an in-memory client on the shared RedisManager."""
    fake = InMemoryRedis()
    previous = redis_manager.client
    redis_manager.client = fake
    yield fake
    redis_manager.client = previous


@pytest.fixture
def broken_redis():
    broken = BrokenRedis()
    previous = redis_manager.client
    redis_manager.client = broken
    yield broken
    redis_manager.client = previous


@pytest.fixture
def slow_redis():
    slow = YieldingRedis()
    previous = redis_manager.client
    redis_manager.client = slow
    yield slow
    redis_manager.client = previous
