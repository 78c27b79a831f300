"""Read-through, write-through cache in front of a config store.

User accounts and the tier table are read on every request but change
rarely. Reads are served from a short-lived local cache; writes made through
this wrapper (the scheduler's tier refresh) update the cache immediately.
Writes made by other processes become visible once the entry expires.
"""

from __future__ import annotations

import copy
from typing import Callable

from app.adapters.stores.base import AbstractConfigStore, Document
from app.utils.simple_cache import SimpleTTLCache


class CachingConfigStore(AbstractConfigStore):
    """Wrap another config store with a SimpleTTLCache."""

    def __init__(self, inner: AbstractConfigStore, cache: SimpleTTLCache) -> None:
        self._inner = inner
        self._cache = cache

    @property
    def cache(self) -> SimpleTTLCache:
        return self._cache

    async def get(self, key: str) -> Document | None:
        cached = self._cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        document = await self._inner.get(key)
        # Absent keys are not cached so a newly created user is seen at once
        if document is not None:
            self._cache.set(key, copy.deepcopy(document))
        return document

    async def put(self, key: str, document: Document) -> None:
        await self._inner.put(key, document)
        self._cache.set(key, copy.deepcopy(document))

    async def bulk_delete(self, predicate: Callable[[str], bool]) -> int:
        removed = await self._inner.bulk_delete(predicate)
        self._cache.clear()
        return removed

    async def count(self, predicate: Callable[[str], bool]) -> int:
        return await self._inner.count(predicate)
