"""Store adapters.

The engine talks to two abstract stores (config and counters). Backends:
in-memory for a single process, Redis for a shared deployment.
"""

from app.adapters.stores.base import (
    AbstractConfigStore,
    AbstractCounterStore,
    CounterDocument,
    UpdateOutcome,
)
from app.adapters.stores.factory import StoreBundle, create_stores

__all__ = [
    "AbstractConfigStore",
    "AbstractCounterStore",
    "CounterDocument",
    "StoreBundle",
    "UpdateOutcome",
    "create_stores",
]
