"""Application factory for the admission gateway.

Centralizes app construction (lifespan, middleware, handlers, routers) so
tests can build isolated apps with injected collaborators.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.api.routes import admission_router, health_router
from app.core.config import Settings, settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.runtime import GatewayRuntime, build_runtime

logger = logging.getLogger(__name__)


def create_app(
    cfg: Settings | None = None,
    *,
    runtime_factory: Callable[[Settings], GatewayRuntime] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cfg: Settings to use (defaults to the global settings).
        runtime_factory: Builds the runtime at startup; tests pass one that
            injects fake stores, forwarder or tier source.

    Returns:
        Configured FastAPI app.
    """
    cfg = cfg or settings
    build = runtime_factory or build_runtime

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime = build(cfg)
        try:
            await runtime.start(cfg)
        except Exception:
            logger.exception("gateway.start_failed")
            await runtime.stop()
            raise
        app.state.runtime = runtime
        logger.info(
            "gateway.started",
            extra={"store_backend": cfg.store.backend, "activation_reason": cfg.app.activation_reason},
        )
        try:
            yield
        finally:
            await runtime.stop()
            logger.info("gateway.stopped")

    app = FastAPI(
        title="Tiered Admission Gateway",
        description=(
            "Admits or rejects requests per user against a tier quota, counts "
            "admitted requests with optimistic concurrency and forwards them "
            "to the downstream endpoint."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(admission_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
