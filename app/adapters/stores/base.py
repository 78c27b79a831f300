"""Store interfaces for shared admission state.

Two stores back the engine:
- the config store holds read-mostly documents (user accounts, tier table);
- the counter store holds one mutable counter per user, updated only through
  version-checked writes.

Services depend on these abstractions so the in-memory backend can be swapped
for Redis without touching the request path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

Document = dict[str, Any]


class UpdateOutcome(str, Enum):
    """Result of a conditional counter update."""

    APPLIED = "applied"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class CounterDocument:
    """A counter read together with the version it was observed at.

    Attributes:
        key: Counter key (user identity).
        count: Requests consumed in the current window.
        version: Opaque token; only meaningful to the store that issued it.
    """

    key: str
    count: int
    version: str


class AbstractConfigStore(ABC):
    """Key/document store for user accounts and tier definitions."""

    @abstractmethod
    async def get(self, key: str) -> Document | None:
        """Return the document stored under key, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, document: Document) -> None:
        """Create or overwrite the document under key."""
        raise NotImplementedError

    @abstractmethod
    async def bulk_delete(self, predicate: Callable[[str], bool]) -> int:
        """Delete every document whose key matches predicate.

        Returns:
            Number of documents removed.
        """
        raise NotImplementedError

    @abstractmethod
    async def count(self, predicate: Callable[[str], bool]) -> int:
        """Count documents whose key matches predicate."""
        raise NotImplementedError


class AbstractCounterStore(ABC):
    """Per-user counters supporting optimistic concurrency control."""

    @abstractmethod
    async def get(self, key: str) -> CounterDocument | None:
        """Read a counter and its version, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def insert_if_absent(self, key: str, count: int = 0) -> bool:
        """Create a counter unless one exists.

        Returns:
            True if this call created the record, False if it already existed.
        """
        raise NotImplementedError

    @abstractmethod
    async def conditional_update(self, key: str, version: str, count: int) -> UpdateOutcome:
        """Set the counter to count only if its version still equals version.

        A counter deleted since it was read also reports CONFLICT.
        """
        raise NotImplementedError

    @abstractmethod
    async def bulk_delete(self) -> int:
        """Delete every counter.

        Returns:
            Number of counters removed.
        """
        raise NotImplementedError
