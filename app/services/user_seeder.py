"""Demo user generation for local runs and load tests.

Creates ``User-<n>`` accounts with random ids and tiers assigned round-robin,
writes them to the config store and reports how many user documents exist.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from app.adapters.stores.base import AbstractConfigStore
from app.schemas.tiers import USER_KEY_PREFIX, UserAccount, user_key

logger = logging.getLogger(__name__)

DEFAULT_TIER_ORDER: tuple[str, ...] = ("Bronze", "Silver", "Gold", "Platinum")


def generate_users(count: int, tiers: Sequence[str] = DEFAULT_TIER_ORDER) -> list[UserAccount]:
    """Build count users, cycling through tiers in order."""
    if count < 0:
        raise ValueError("count must be >= 0")
    if not tiers:
        raise ValueError("tiers must not be empty")

    return [
        UserAccount(
            user_id=str(uuid.uuid4()),
            tier=tiers[i % len(tiers)],
            name=f"User-{i + 1}",
        )
        for i in range(count)
    ]


async def seed_users(config_store: AbstractConfigStore, users: Sequence[UserAccount]) -> int:
    """Upsert users and return the total number of user documents stored."""
    for user in users:
        await config_store.put(user_key(user.user_id), user.model_dump())

    total = await config_store.count(lambda key: key.startswith(USER_KEY_PREFIX))
    logger.info("users.seeded", extra={"written": len(users), "total_users": total})
    return total
