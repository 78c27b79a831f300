"""In-memory store backends.

Notes:
- Per-process only: running multiple workers gives each worker its own
  counters, which multiplies the effective quota. Use the Redis backend there.
- Thread-safe: every primitive holds a lock for its whole read-modify-write,
  so each call is atomic. No lock is held across calls.
"""

from __future__ import annotations

import copy
import itertools
import threading
from typing import Callable

from app.adapters.stores.base import (
    AbstractConfigStore,
    AbstractCounterStore,
    CounterDocument,
    Document,
    UpdateOutcome,
)


class InMemoryConfigStore(AbstractConfigStore):
    """Dictionary-backed config store.

    Documents are deep-copied on the way in and out so callers cannot mutate
    shared state behind the store's back.
    """

    def __init__(self, initial: dict[str, Document] | None = None) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {
            key: copy.deepcopy(doc) for key, doc in (initial or {}).items()
        }

    async def get(self, key: str) -> Document | None:
        with self._lock:
            document = self._documents.get(key)
            return copy.deepcopy(document) if document is not None else None

    async def put(self, key: str, document: Document) -> None:
        with self._lock:
            self._documents[key] = copy.deepcopy(document)

    async def bulk_delete(self, predicate: Callable[[str], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._documents if predicate(key)]
            for key in doomed:
                del self._documents[key]
            return len(doomed)

    async def count(self, predicate: Callable[[str], bool]) -> int:
        with self._lock:
            return sum(1 for key in self._documents if predicate(key))


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store with monotonically increasing version tokens.

    Versions come from a process-wide sequence, so a counter that is deleted
    and recreated never reuses a version a slow request may still hold.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[str, tuple[int, str]] = {}
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    async def get(self, key: str) -> CounterDocument | None:
        with self._lock:
            entry = self._counters.get(key)
            if entry is None:
                return None
            count, version = entry
            return CounterDocument(key=key, count=count, version=version)

    async def insert_if_absent(self, key: str, count: int = 0) -> bool:
        if count < 0:
            raise ValueError("count must be >= 0")

        with self._lock:
            if key in self._counters:
                return False
            self._counters[key] = (count, self._next_version())
            return True

    async def conditional_update(self, key: str, version: str, count: int) -> UpdateOutcome:
        if count < 0:
            raise ValueError("count must be >= 0")

        with self._lock:
            entry = self._counters.get(key)
            if entry is None or entry[1] != version:
                return UpdateOutcome.CONFLICT
            self._counters[key] = (count, self._next_version())
            return UpdateOutcome.APPLIED

    async def bulk_delete(self) -> int:
        with self._lock:
            removed = len(self._counters)
            self._counters.clear()
            return removed
