"""Key-value storage backends for history, rate counters and key usage."""

import json
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis


class KVStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def put(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


async def get_json(store: KVStore, key: str) -> Any:
    """Read and decode a JSON value; ``None`` when the key is absent."""
    raw = await store.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def put_json(
    store: KVStore, key: str, value: Any, ttl_seconds: Optional[int] = None
) -> None:
    await store.put(key, json.dumps(value), ttl_seconds=ttl_seconds)


class InMemoryKVStore:
    """Process-local store with per-key expiry, for development and tests."""

    def __init__(self, timer: Callable[[], float] = time.time):
        self._timer = timer
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._timer() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._timer() + ttl_seconds
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        self._data.clear()


class RedisKVStore:
    """Store backed by Redis; expiry uses ``SET ... EX``."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKVStore":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def put(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_store(url: str) -> Optional[KVStore]:
    """Build a store from a URL; an empty URL means the store is not configured."""
    if not url:
        return None
    if url.startswith("memory://"):
        return InMemoryKVStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisKVStore.from_url(url)
    raise ValueError(f"Unsupported store URL: {url}")
