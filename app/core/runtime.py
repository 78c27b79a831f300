"""Process-scoped wiring of stores, engine and scheduler.

Everything the request path and the background jobs share is built once in
the application lifespan and kept on ``app.state.runtime``. Routes reach it
through ``get_runtime``; nothing is held in module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable

from fastapi import Request

from app.adapters.forwarder.base import AbstractForwarder
from app.adapters.forwarder.http_forwarder import HttpForwarder
from app.adapters.stores.factory import StoreBundle, create_stores
from app.adapters.tier_source.base import AbstractTierSource
from app.adapters.tier_source.http_tier_source import HttpTierSource, StaticTierSource
from app.core.config import Settings, settings
from app.services.admission_service import AdmissionEngine
from app.services.quota_resolver import QuotaResolver
from app.services.scheduler import AbstractTimer, AsyncioTimer, QuotaScheduler
from app.services.user_seeder import generate_users, seed_users

logger = logging.getLogger(__name__)


@dataclass
class GatewayRuntime:
    """All long-lived collaborators of one gateway process."""

    stores: StoreBundle
    resolver: QuotaResolver
    engine: AdmissionEngine
    scheduler: QuotaScheduler
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def start(self, cfg: Settings) -> None:
        if cfg.app.seed_demo_users:
            await seed_users(self.stores.config, generate_users(cfg.app.seed_demo_users))
        await self.scheduler.activate(
            cfg.app.activation_reason,
            arm_timers=cfg.scheduler.enabled,
        )

    async def stop(self) -> None:
        self.scheduler.shutdown()
        for close in self.closers:
            await close()


def create_tier_source(cfg: Settings) -> AbstractTierSource:
    if cfg.tiers.endpoint_url:
        return HttpTierSource(
            cfg.tiers.endpoint_url,
            username=cfg.tiers.username,
            password=cfg.tiers.password,
            timeout_seconds=cfg.tiers.timeout_seconds,
        )
    return StaticTierSource(cfg.tiers.static_tiers)


def create_forwarder(cfg: Settings) -> AbstractForwarder:
    return HttpForwarder(
        cfg.forwarder.endpoint_url,
        username=cfg.forwarder.username,
        password=cfg.forwarder.password,
        timeout_seconds=cfg.forwarder.timeout_seconds,
        user_id_field=cfg.app.user_id_field,
    )


def build_runtime(
    cfg: Settings | None = None,
    *,
    stores: StoreBundle | None = None,
    forwarder: AbstractForwarder | None = None,
    tier_source: AbstractTierSource | None = None,
    timer: AbstractTimer | None = None,
) -> GatewayRuntime:
    """Assemble a runtime from settings; any collaborator may be injected."""
    cfg = cfg or settings
    stores = stores or create_stores(cfg.store)
    forwarder = forwarder or create_forwarder(cfg)
    tier_source = tier_source or create_tier_source(cfg)

    resolver = QuotaResolver(stores.config)
    engine = AdmissionEngine(
        resolver=resolver,
        counters=stores.counters,
        forwarder=forwarder,
        max_attempts=cfg.app.max_cas_attempts,
    )
    scheduler = QuotaScheduler(
        config_store=stores.config,
        counters=stores.counters,
        tier_source=tier_source,
        timer=timer or AsyncioTimer(),
        tier_refresh_interval=timedelta(seconds=cfg.scheduler.tier_refresh_interval_seconds),
        counter_reset_interval=timedelta(seconds=cfg.scheduler.counter_reset_interval_seconds),
    )

    closers: list[Callable[[], Awaitable[None]]] = []
    for component in (forwarder, tier_source):
        aclose = getattr(component, "aclose", None)
        if aclose is not None:
            closers.append(aclose)
    if stores.close is not None:
        closers.append(stores.close)

    return GatewayRuntime(
        stores=stores,
        resolver=resolver,
        engine=engine,
        scheduler=scheduler,
        closers=closers,
    )


def get_runtime(request: Request) -> GatewayRuntime:
    """FastAPI dependency returning the runtime built at startup."""
    return request.app.state.runtime
