"""Pydantic schemas for admission requests and decisions."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AdmissionDecision(BaseModel):
    """Outcome of one pass through the admission engine."""

    admitted: bool = Field(..., description="Whether the request was forwarded downstream.")
    user_id: str = Field(..., description="Identity the decision applies to.")
    current_count: int = Field(
        ...,
        description="Counter value after the decision (incremented value when admitted).",
    )
    limit: int = Field(..., description="Tier limit the counter was compared against.")
    attempts: int = Field(
        1,
        description="Read-decide-update passes needed (more than 1 means version conflicts).",
    )


class UsageResponse(BaseModel):
    """Current window usage for one user."""

    user_id: str
    tier: str
    limit: int
    current_count: int
    remaining: int
