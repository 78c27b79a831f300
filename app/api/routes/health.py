from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.runtime import GatewayRuntime, get_runtime
from app.schemas.tiers import TIER_LIMITS_KEY

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check used by load balancers and monitoring systems.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(runtime: GatewayRuntime = Depends(get_runtime)) -> JSONResponse:
    """Readiness check: the tier table has been loaded into the config store."""

    tiers = await runtime.stores.config.get(TIER_LIMITS_KEY)
    if tiers is None:
        return JSONResponse(status_code=503, content={"status": "tiers_not_loaded"})
    return JSONResponse(status_code=200, content={"status": "ready", "tiers": len(tiers)})
