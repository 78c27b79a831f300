"""Factory for creating the config and counter stores."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from app.adapters.stores.base import AbstractConfigStore, AbstractCounterStore
from app.adapters.stores.caching import CachingConfigStore
from app.adapters.stores.in_memory import InMemoryConfigStore, InMemoryCounterStore
from app.core.config import StoreSettings, settings
from app.core.errors import ValidationAppError
from app.utils.simple_cache import SimpleTTLCache


@dataclass
class StoreBundle:
    """Stores shared by the engine and the scheduler."""

    config: AbstractConfigStore
    counters: AbstractCounterStore
    close: Callable[[], Awaitable[None]] | None = None


def create_stores(store_settings: StoreSettings | None = None) -> StoreBundle:
    """Instantiate the configured backend.

    The config store is always wrapped in a local read-through cache.

    Returns:
        StoreBundle with the config store, the counter store and an optional
        async close callable for the backend connection.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        config_store: AbstractConfigStore = InMemoryConfigStore()
        counter_store: AbstractCounterStore = InMemoryCounterStore()
        close = None
    elif backend == "redis":
        from redis.asyncio import Redis

        from app.adapters.stores.redis_store import RedisConfigStore, RedisCounterStore

        client = Redis.from_url(cfg.redis_url, decode_responses=True)
        config_store = RedisConfigStore(client, namespace=cfg.namespace)
        counter_store = RedisCounterStore(client, namespace=cfg.namespace)
        close = client.aclose
    else:
        raise ValidationAppError(
            code="store_unknown_backend",
            message=f"Unknown store backend: '{backend}'. Supported backends: memory, redis",
        )

    cache = SimpleTTLCache(
        ttl_seconds=cfg.config_cache_ttl_seconds,
        max_entries=cfg.config_cache_max_entries,
    )
    return StoreBundle(
        config=CachingConfigStore(config_store, cache),
        counters=counter_store,
        close=close,
    )
