"""Resolve the effective request limit of a user.

A user's limit is ``limits[user.tier]``: the account document names the tier,
the singleton tier table maps it to a number. Both reads go through the
(cached) config store; staleness up to the cache lifetime is accepted.
Any missing piece is a ConfigNotFoundError: there is no default tier.
"""

from __future__ import annotations

import logging

from app.adapters.stores.base import AbstractConfigStore
from app.core.errors import ConfigNotFoundError
from app.core.logging import hash_identity
from app.schemas.tiers import TIER_LIMITS_KEY, user_key

logger = logging.getLogger(__name__)


class QuotaResolver:
    """Maps user identities to tier limits."""

    def __init__(self, config_store: AbstractConfigStore) -> None:
        self._config = config_store

    async def resolve_tier(self, user_id: str) -> str:
        """Return the tier name of user_id.

        Raises:
            ConfigNotFoundError: If the user or its tier field is missing.
        """
        account = await self._config.get(user_key(user_id))
        if account is None:
            raise ConfigNotFoundError(
                code="user_not_found",
                message="Unable to get the user's details",
                details={"user_id_hash": hash_identity(user_id)},
            )

        tier = account.get("tier")
        if not tier:
            raise ConfigNotFoundError(
                code="user_tier_missing",
                message="User account has no tier assigned",
                details={"user_id_hash": hash_identity(user_id)},
            )
        return str(tier)

    async def resolve_limit(self, user_id: str) -> int:
        """Return the request limit of user_id for the current window.

        Raises:
            ConfigNotFoundError: If the user, the tier table, or the user's tier
                entry is missing.
        """
        _, limit = await self.resolve(user_id)
        return limit

    async def resolve(self, user_id: str) -> tuple[str, int]:
        """Return (tier, limit) of user_id, reading the account once."""
        tier = await self.resolve_tier(user_id)

        limits = await self._config.get(TIER_LIMITS_KEY)
        if limits is None:
            raise ConfigNotFoundError(
                code="tier_limits_not_found",
                message="Unable to get the tier limits",
                details={"key": TIER_LIMITS_KEY},
            )

        if tier not in limits:
            logger.error(
                "quota.tier_undefined",
                extra={"tier": tier, "user_id_hash": hash_identity(user_id)},
            )
            raise ConfigNotFoundError(
                code="tier_not_defined",
                message=f"Tier '{tier}' has no limit defined",
                details={"tier": tier, "user_id_hash": hash_identity(user_id)},
            )

        return tier, int(limits[tier])
