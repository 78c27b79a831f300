from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.core.auth import verify_api_key
from app.core.config import settings
from app.core.errors import ConfigNotFoundError, ValidationAppError
from app.core.runtime import GatewayRuntime, get_runtime
from app.schemas.admission import AdmissionDecision, UsageResponse
from app.schemas.tiers import TIER_LIMITS_KEY

router = APIRouter(tags=["Admission"], dependencies=[Depends(verify_api_key)])


@router.post("/requests", response_model=AdmissionDecision)
async def submit_request(
    payload: dict[str, Any] = Body(
        ...,
        description="Request document: the identity field plus any fields for the downstream endpoint.",
    ),
    runtime: GatewayRuntime = Depends(get_runtime),
) -> AdmissionDecision:
    """Admit or reject one request against the caller's tier quota.

    Admitted requests are forwarded downstream (without the identity field)
    before this endpoint answers.

    Returns:
        AdmissionDecision: The decision with the updated counter.

    Raises:
        HTTPException: 429 when the tier limit is reached.
        ValidationAppError: 400 when the identity field is missing.
        ConfigNotFoundError: 404 when the user or its tier is unknown.
        DownstreamAppError: 502 when forwarding fails (quota still consumed).
        StoreUnavailableError: 503 on store failure.
    """
    field = settings.app.user_id_field
    user_id = payload.get(field)
    if not isinstance(user_id, str) or not user_id:
        raise ValidationAppError(
            code="user_id_missing",
            message=f"Request document must contain a non-empty '{field}' string",
        )

    decision = await runtime.engine.admit(user_id, payload)
    if not decision.admitted:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Tier limit of {decision.limit} requests reached for this window.",
            headers={
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return decision


@router.get("/usage/{user_id}", response_model=UsageResponse)
async def get_usage(
    user_id: str,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> UsageResponse:
    """Report a user's consumption in the current window (read-only)."""
    tier, limit, current = await runtime.engine.usage(user_id)
    return UsageResponse(
        user_id=user_id,
        tier=tier,
        limit=limit,
        current_count=current,
        remaining=max(0, limit - current),
    )


@router.get("/tiers", response_model=dict[str, int])
async def get_tiers(runtime: GatewayRuntime = Depends(get_runtime)) -> dict[str, int]:
    """Return the tier table currently enforced."""
    tiers = await runtime.stores.config.get(TIER_LIMITS_KEY)
    if tiers is None:
        raise ConfigNotFoundError(
            code="tier_limits_not_found",
            message="Unable to get the tier limits",
        )
    return tiers
