"""Pydantic schemas for tier definitions and user accounts."""

from __future__ import annotations

from pydantic import BaseModel, Field, NonNegativeInt, RootModel

TIER_LIMITS_KEY = "limits"
USER_KEY_PREFIX = "user:"


def user_key(user_id: str) -> str:
    """Config store key of a user account document."""
    return f"{USER_KEY_PREFIX}{user_id}"


class TierTable(RootModel[dict[str, NonNegativeInt]]):
    """Tier name to per-window request limit."""


class UserAccount(BaseModel):
    """A user known to the gateway and the tier they belong to."""

    user_id: str = Field(..., min_length=1, description="Unique user identity.")
    tier: str = Field(..., min_length=1, description="Tier name; must exist in the tier table.")
    name: str | None = Field(default=None, description="Display name.")
