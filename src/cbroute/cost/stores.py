"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Usage store backends behind the budget ledger.
"""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock
from typing import Any, Protocol, runtime_checkable

from ..errors import ConfigurationError


@runtime_checkable
class UsageStore(Protocol):
    """Durable counter store keyed by `<account>:<period bucket>`."""

    backend_id: str

    async def get(self, key: str) -> float:
        """Return amount used for key, 0.0 when absent."""

    async def increment(self, key: str, amount: float, *, ttl_s: float | None = None) -> float:
        """Add `amount` and return the new total. `ttl_s` bounds how long the key is kept."""


class InMemoryUsageStore:
    """Process-local usage counters, serialized per key."""

    backend_id = "inmemory"

    def __init__(self) -> None:
        self._rows: dict[str, float] = {}
        self._locks: dict[str, Lock] = {}
        self._table_lock = Lock()

    def _lock_for(self, key: str) -> Lock:
        with self._table_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    async def get(self, key: str) -> float:
        with self._lock_for(key):
            return self._rows.get(key, 0.0)

    async def increment(self, key: str, amount: float, *, ttl_s: float | None = None) -> float:
        with self._lock_for(key):
            total = self._rows.get(key, 0.0) + amount
            self._rows[key] = total
            return total


class RedisUsageStore:
    """Redis-backed counters for multi-process deployments."""

    backend_id = "redis"

    def __init__(
        self,
        redis_client: Any,
        *,
        prefix: str = "cbroute:usage",
        ttl_s: float | None = None,
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._ttl_s = ttl_s

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> float:
        blob = await self._redis.get(self._key(key))
        if blob is None:
            return 0.0
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8")
        return float(blob)

    async def increment(self, key: str, amount: float, *, ttl_s: float | None = None) -> float:
        full_key = self._key(key)
        total = await self._redis.incrbyfloat(full_key, amount)
        ttl = ttl_s if ttl_s is not None else self._ttl_s
        if ttl is not None:
            await self._redis.expire(full_key, int(max(1, ttl)))
        return float(total)

    async def aclose(self) -> None:
        await self._redis.aclose()


UsageStoreFactory = Callable[..., UsageStore]

_REGISTRY: dict[str, UsageStoreFactory] = {}
_LOCK = Lock()


def register_usage_store(
    backend_id: str,
    factory: UsageStoreFactory,
    *,
    overwrite: bool = False,
) -> None:
    """Register one usage store factory by id."""
    key = backend_id.strip().lower()
    if not key:
        raise ConfigurationError("Usage store id must be non-empty")

    with _LOCK:
        if key in _REGISTRY and not overwrite:
            raise ConfigurationError(f"Usage store already registered: {key}")
        _REGISTRY[key] = factory


def _redis_factory(*, redis_url: str | None = None, redis_client: Any | None = None) -> UsageStore:
    client = redis_client
    if client is None:
        try:
            import redis.asyncio as redis
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise ConfigurationError(
                "Redis usage store requires `redis` to be installed."
            ) from exc
        client = redis.Redis.from_url(redis_url or "redis://localhost:6379/0")
    return RedisUsageStore(client)


def _inmemory_factory(**_: Any) -> UsageStore:
    return InMemoryUsageStore()


def create_usage_store(
    backend: str | UsageStore | None = None,
    **options: Any,
) -> UsageStore:
    """Resolve a usage store from id/instance/default (`inmemory`)."""
    if backend is not None and not isinstance(backend, str):
        return backend

    key = (backend or "inmemory").strip().lower()
    with _LOCK:
        factory = _REGISTRY.get(key)
    if factory is None:
        raise ConfigurationError(f"Unknown usage store backend '{backend}'")
    return factory(**options)


def list_usage_stores() -> list[str]:
    """List registered usage store ids."""
    with _LOCK:
        return sorted(_REGISTRY.keys())


register_usage_store("inmemory", _inmemory_factory)
register_usage_store("redis", _redis_factory)
