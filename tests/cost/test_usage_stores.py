from __future__ import annotations

import asyncio
import os
import uuid

import pytest

from cbroute.cost import (
    InMemoryUsageStore,
    RedisUsageStore,
    UsageStore,
    create_usage_store,
    list_usage_stores,
    register_usage_store,
)
from cbroute.errors import ConfigurationError


def run_async(coro):
    return asyncio.run(coro)


class _FakeRedis:
    def __init__(self) -> None:
        self.rows: dict[str, float] = {}
        self.expiries: dict[str, int] = {}

    async def get(self, key):
        value = self.rows.get(key)
        return None if value is None else str(value).encode("utf-8")

    async def incrbyfloat(self, key, amount):
        self.rows[key] = self.rows.get(key, 0.0) + amount
        return self.rows[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds


def test_default_store_is_inmemory():
    store = create_usage_store()

    assert isinstance(store, InMemoryUsageStore)
    assert isinstance(store, UsageStore)
    assert {"inmemory", "redis"} <= set(list_usage_stores())


def test_instances_pass_through_and_unknown_ids_fail():
    store = InMemoryUsageStore()

    assert create_usage_store(store) is store
    with pytest.raises(ConfigurationError):
        create_usage_store("etcd")


def test_duplicate_registration_requires_overwrite():
    backend_id = f"test-{uuid.uuid4().hex[:8]}"
    register_usage_store(backend_id, lambda **_: InMemoryUsageStore())

    with pytest.raises(ConfigurationError):
        register_usage_store(backend_id, lambda **_: InMemoryUsageStore())
    register_usage_store(backend_id, lambda **_: InMemoryUsageStore(), overwrite=True)
    assert backend_id in list_usage_stores()


def test_inmemory_increments_accumulate_under_concurrency():
    store = InMemoryUsageStore()

    async def _scenario():
        await asyncio.gather(*(store.increment("user:a:daily:x", 0.25) for _ in range(40)))
        return await store.get("user:a:daily:x"), await store.get("missing")

    total, missing = run_async(_scenario())

    assert total == pytest.approx(10.0)
    assert missing == 0.0


def test_redis_store_prefixes_keys_and_sets_ttl():
    client = _FakeRedis()
    store = create_usage_store("redis", redis_client=client)
    ttl_store = RedisUsageStore(client, prefix="t", ttl_s=90)

    async def _scenario():
        await store.increment("user:a:daily:x", 1.5)
        await ttl_store.increment("k", 2.0)
        return await store.get("user:a:daily:x")

    total = run_async(_scenario())

    assert total == pytest.approx(1.5)
    assert "cbroute:usage:user:a:daily:x" in client.rows
    assert client.expiries == {"t:k": 90}


def _redis_url() -> str | None:
    return os.getenv("CBROUTE_TEST_REDIS_URL")


@pytest.mark.skipif(_redis_url() is None, reason="CBROUTE_TEST_REDIS_URL is not set")
def test_redis_store_with_real_redis():
    redis = pytest.importorskip("redis.asyncio")

    async def _scenario():
        client = redis.Redis.from_url(_redis_url())
        store = RedisUsageStore(client, prefix=f"itest:usage:{uuid.uuid4().hex}", ttl_s=60)
        try:
            await store.increment("user:a:daily:x", 0.5)
            await store.increment("user:a:daily:x", 0.25)
            return await store.get("user:a:daily:x")
        finally:
            await store.aclose()

    assert run_async(_scenario()) == pytest.approx(0.75)
