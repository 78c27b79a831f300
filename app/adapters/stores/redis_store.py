"""Redis store backends shared by every worker and host.

Layout (``ns`` is the configured namespace):
- ``{ns}:config:{key}``   JSON string per config document
- ``{ns}:counter:{user}`` hash with ``count`` and ``version`` fields
- ``{ns}:counter-seq``    version sequence for counters

Counter writes run as Lua scripts so the version check and the write are a
single atomic step on the server.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.stores.base import (
    AbstractConfigStore,
    AbstractCounterStore,
    CounterDocument,
    Document,
    UpdateOutcome,
)
from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# KEYS[1]=counter, KEYS[2]=sequence; ARGV[1]=initial count
_LUA_INSERT_IF_ABSENT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
local v = redis.call('INCR', KEYS[2])
redis.call('HSET', KEYS[1], 'count', ARGV[1], 'version', v)
return 1
"""

# KEYS[1]=counter, KEYS[2]=sequence; ARGV[1]=expected version, ARGV[2]=new count
_LUA_CONDITIONAL_UPDATE = """
local current = redis.call('HGET', KEYS[1], 'version')
if (not current) or current ~= ARGV[1] then
  return 0
end
local v = redis.call('INCR', KEYS[2])
redis.call('HSET', KEYS[1], 'count', ARGV[2], 'version', v)
return 1
"""

_SCAN_BATCH = 500


@contextmanager
def _store_errors(operation: str, key: str | None = None) -> Iterator[None]:
    """Translate Redis client failures into StoreUnavailableError."""
    try:
        yield
    except RedisError as exc:
        logger.error(
            "store.unavailable",
            extra={"backend": "redis", "operation": operation, "error_type": type(exc).__name__},
        )
        raise StoreUnavailableError(
            code="store_unavailable",
            message=f"Redis {operation} failed: {exc}",
            details={"backend": "redis", "key": key or ""},
        ) from exc


class RedisConfigStore(AbstractConfigStore):
    """Config documents stored as JSON strings."""

    def __init__(self, redis: Redis, *, namespace: str) -> None:
        self.r = redis
        self._prefix = f"{namespace}:config:"

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _matching_keys(self, predicate: Callable[[str], bool]) -> list[str]:
        matched: list[str] = []
        async for raw in self.r.scan_iter(match=f"{self._prefix}*", count=_SCAN_BATCH):
            full = raw.decode() if isinstance(raw, (bytes, bytearray)) else str(raw)
            if predicate(full[len(self._prefix):]):
                matched.append(full)
        return matched

    async def get(self, key: str) -> Document | None:
        with _store_errors("get", key):
            raw = await self.r.get(self._k(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, key: str, document: Document) -> None:
        with _store_errors("put", key):
            await self.r.set(self._k(key), json.dumps(document))

    async def bulk_delete(self, predicate: Callable[[str], bool]) -> int:
        with _store_errors("bulk_delete"):
            keys = await self._matching_keys(predicate)
            if keys:
                await self.r.delete(*keys)
        return len(keys)

    async def count(self, predicate: Callable[[str], bool]) -> int:
        with _store_errors("count"):
            return len(await self._matching_keys(predicate))


class RedisCounterStore(AbstractCounterStore):
    """Counters as hashes, with versions drawn from a shared sequence."""

    def __init__(self, redis: Redis, *, namespace: str) -> None:
        self.r = redis
        self._prefix = f"{namespace}:counter:"
        self._seq_key = f"{namespace}:counter-seq"

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> CounterDocument | None:
        with _store_errors("get", key):
            count, version = await self.r.hmget(self._k(key), ["count", "version"])
        if count is None or version is None:
            return None
        if isinstance(version, (bytes, bytearray)):
            version = version.decode()
        return CounterDocument(key=key, count=int(count), version=str(version))

    async def insert_if_absent(self, key: str, count: int = 0) -> bool:
        if count < 0:
            raise ValueError("count must be >= 0")
        with _store_errors("insert_if_absent", key):
            created = await self.r.eval(
                _LUA_INSERT_IF_ABSENT, 2, self._k(key), self._seq_key, str(count)
            )
        return bool(int(created))

    async def conditional_update(self, key: str, version: str, count: int) -> UpdateOutcome:
        if count < 0:
            raise ValueError("count must be >= 0")
        with _store_errors("conditional_update", key):
            applied = await self.r.eval(
                _LUA_CONDITIONAL_UPDATE, 2, self._k(key), self._seq_key, version, str(count)
            )
        return UpdateOutcome.APPLIED if int(applied) else UpdateOutcome.CONFLICT

    async def bulk_delete(self) -> int:
        removed = 0
        with _store_errors("bulk_delete"):
            batch: list[str] = []
            async for raw in self.r.scan_iter(match=f"{self._prefix}*", count=_SCAN_BATCH):
                batch.append(raw.decode() if isinstance(raw, (bytes, bytearray)) else str(raw))
                if len(batch) >= _SCAN_BATCH:
                    removed += await self.r.delete(*batch)
                    batch = []
            if batch:
                removed += await self.r.delete(*batch)
        return removed
