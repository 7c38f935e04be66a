"""
Record store backends.

The core only needs a key-value store over named collections with
read-your-writes per key, plus one atomic primitive (``set_if_absent``)
used as compare-and-set when a challenge is promoted.

- MemoryRecordStore: per-instance dict, for tests and local dev
- UpstashRecordStore: Upstash Redis REST (SET NX for the atomic step)
"""

import asyncio
import copy
import json
import logging
from typing import Any, Protocol

from .config import STORE_KEY_PREFIX, UPSTASH_REDIS_REST_TOKEN, UPSTASH_REDIS_REST_URL

logger = logging.getLogger(__name__)

# ========================================
# COLLECTIONS
# ========================================

SERVERS = "servers"
CHALLENGES = "challenges"
ACTIVE_CHALLENGES = "active_challenges"  # domain -> challenge_id
VERIFICATION_CLAIMS = "verification_claims"  # challenge_id -> claim


class RecordStore(Protocol):
    """Key-value store keyed by collection + key, holding JSON dicts."""

    async def get(self, collection: str, key: str) -> dict[str, Any] | None: ...

    async def set(self, collection: str, key: str, value: dict[str, Any]) -> None: ...

    async def set_if_absent(self, collection: str, key: str, value: dict[str, Any]) -> bool:
        """Store value only if key is unset. Returns True if this call stored it."""
        ...

    async def get_all(self, collection: str) -> list[dict[str, Any]]: ...

    async def delete(self, collection: str, key: str) -> None: ...


class MemoryRecordStore:
    """
    In-memory store.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store, the same as a serializing backend.
    """

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        value = self._data.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, collection: str, key: str, value: dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def set_if_absent(self, collection: str, key: str, value: dict[str, Any]) -> bool:
        async with self._lock:
            bucket = self._data.setdefault(collection, {})
            if key in bucket:
                return False
            bucket[key] = copy.deepcopy(value)
            return True

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        bucket = self._data.get(collection, {})
        return [copy.deepcopy(bucket[k]) for k in sorted(bucket)]

    async def delete(self, collection: str, key: str) -> None:
        self._data.get(collection, {}).pop(key, None)


class UpstashRecordStore:
    """
    Upstash Redis store.

    Each record lives at ``{prefix}:{collection}:{key}`` as a JSON string;
    a set at ``{prefix}:{collection}:__index__`` lists the keys of a
    collection so ``get_all`` can fetch them with MGET.
    """

    def __init__(self, redis, prefix: str = STORE_KEY_PREFIX):
        """
        Initialize the store.

        Args:
            redis: An ``upstash_redis.asyncio.Redis`` client
            prefix: Namespace for all keys written by this store
        """
        self.redis = redis
        self.prefix = prefix

    def _key(self, collection: str, key: str) -> str:
        return f"{self.prefix}:{collection}:{key}"

    def _index(self, collection: str) -> str:
        return f"{self.prefix}:{collection}:__index__"

    @staticmethod
    def _decode(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        if isinstance(raw, (bytes, str)):
            return json.loads(raw)
        return raw

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        return self._decode(await self.redis.get(self._key(collection, key)))

    async def set(self, collection: str, key: str, value: dict[str, Any]) -> None:
        await self.redis.set(self._key(collection, key), json.dumps(value))
        await self.redis.sadd(self._index(collection), key)

    async def set_if_absent(self, collection: str, key: str, value: dict[str, Any]) -> bool:
        stored = await self.redis.set(self._key(collection, key), json.dumps(value), nx=True)
        if not stored:
            return False
        await self.redis.sadd(self._index(collection), key)
        return True

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        keys = sorted(await self.redis.smembers(self._index(collection)) or [])
        if not keys:
            return []
        raws = await self.redis.mget(*[self._key(collection, k) for k in keys])
        records = []
        for key, raw in zip(keys, raws):
            if raw is None:
                # Index entry outlived the record; drop it
                logger.debug(f"Pruning stale index entry {collection}:{key}")
                await self.redis.srem(self._index(collection), key)
                continue
            records.append(self._decode(raw))
        return records

    async def delete(self, collection: str, key: str) -> None:
        await self.redis.delete(self._key(collection, key))
        await self.redis.srem(self._index(collection), key)


def get_record_store() -> RecordStore:
    """Get the Upstash store if Redis is configured, else an in-memory one."""
    if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
        logger.warning("Upstash Redis not configured; using in-memory record store")
        return MemoryRecordStore()

    from upstash_redis.asyncio import Redis

    redis = Redis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)
    return UpstashRecordStore(redis)
