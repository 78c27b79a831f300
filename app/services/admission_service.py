"""Admission engine: per-user quota enforcement without a global lock.

Each request walks this state machine:

    ResolvingQuota -> FetchingCounter -> Deciding -> Rejected
                                                  -> Incrementing -> Admitted

Incrementing is a conditional write against the counter version read in
FetchingCounter. When another request for the same user wins the race, the
write reports a conflict and the whole read-decide-increment pass starts
over against the fresh counter. So every comparison with the limit is made
against a value that was current when the increment was attempted, and two
racing requests can never both spend the last unit.

The counter is committed before forwarding. A failed forward still consumes
quota.
"""

from __future__ import annotations

import logging
from typing import Any

from app.adapters.forwarder.base import AbstractForwarder
from app.adapters.stores.base import AbstractCounterStore, CounterDocument, UpdateOutcome
from app.core.errors import DownstreamAppError, StoreUnavailableError
from app.core.logging import hash_identity
from app.schemas.admission import AdmissionDecision
from app.services.quota_resolver import QuotaResolver

logger = logging.getLogger(__name__)


class AdmissionEngine:
    """Decide, count and forward one request at a time, safely in parallel."""

    def __init__(
        self,
        *,
        resolver: QuotaResolver,
        counters: AbstractCounterStore,
        forwarder: AbstractForwarder,
        max_attempts: int = 0,
    ) -> None:
        """Initialize the engine.

        Args:
            resolver: Source of per-user limits.
            counters: Versioned counter store shared by all requests.
            forwarder: Destination of admitted payloads.
            max_attempts: Bound on retry passes per request (0 for unbounded).
                Under sustained contention a request can exhaust the bound and
                fail with StoreUnavailableError instead of waiting forever.
        """
        self._resolver = resolver
        self._counters = counters
        self._forwarder = forwarder
        self._max_attempts = max_attempts

    def _check_attempts(self, attempts: int, user_id: str, stage: str) -> None:
        if self._max_attempts and attempts > self._max_attempts:
            logger.error(
                "admission.contention_exhausted",
                extra={
                    "user_id_hash": hash_identity(user_id),
                    "stage": stage,
                    "attempts": attempts - 1,
                },
            )
            raise StoreUnavailableError(
                code="contention_exhausted",
                message=f"Gave up after {attempts - 1} attempts while {stage}",
                details={"attempts": attempts - 1, "user_id_hash": hash_identity(user_id)},
            )

    async def _fetch_counter(self, user_id: str) -> CounterDocument:
        """Read the user's counter, creating it at zero if needed.

        Losing the insert to a concurrent request is expected; the next read
        then finds that request's counter.
        """
        attempts = 0
        while True:
            attempts += 1
            self._check_attempts(attempts, user_id, "fetching counter")

            counter = await self._counters.get(user_id)
            if counter is not None:
                return counter

            created = await self._counters.insert_if_absent(user_id, 0)
            logger.debug(
                "admission.counter_created" if created else "admission.counter_insert_lost",
                extra={"user_id_hash": hash_identity(user_id)},
            )

    async def admit(self, user_id: str, payload: dict[str, Any]) -> AdmissionDecision:
        """Run one request through the engine.

        Args:
            user_id: Identity the request is charged to.
            payload: Full request document; forwarded minus the identity field.

        Returns:
            AdmissionDecision; ``admitted`` is False when the tier limit is reached.

        Raises:
            ConfigNotFoundError: User, tier table or tier entry missing.
            StoreUnavailableError: Store failure or retry bound exhausted.
            DownstreamAppError: Forward failed after the quota was consumed.
        """
        user_hash = hash_identity(user_id)
        attempts = 0

        while True:
            attempts += 1
            self._check_attempts(attempts, user_id, "incrementing counter")

            limit = await self._resolver.resolve_limit(user_id)
            counter = await self._fetch_counter(user_id)

            # >= rather than ==: after a limit is lowered, users already above
            # the new limit must stay rejected until the next reset.
            if counter.count >= limit:
                logger.info(
                    "admission.rejected",
                    extra={
                        "user_id_hash": user_hash,
                        "limit": limit,
                        "current_count": counter.count,
                        "attempts": attempts,
                    },
                )
                return AdmissionDecision(
                    admitted=False,
                    user_id=user_id,
                    current_count=counter.count,
                    limit=limit,
                    attempts=attempts,
                )

            outcome = await self._counters.conditional_update(
                user_id, counter.version, counter.count + 1
            )
            if outcome is UpdateOutcome.CONFLICT:
                logger.debug(
                    "admission.cas_conflict",
                    extra={"user_id_hash": user_hash, "attempts": attempts},
                )
                continue

            new_count = counter.count + 1
            logger.info(
                "admission.admitted",
                extra={
                    "user_id_hash": user_hash,
                    "limit": limit,
                    "current_count": new_count,
                    "attempts": attempts,
                },
            )

            try:
                await self._forwarder.forward(payload)
            except DownstreamAppError as exc:
                logger.warning(
                    "admission.forward_failed",
                    extra={
                        "user_id_hash": user_hash,
                        "error_code": exc.code,
                        "http_status": (exc.details or {}).get("http_status"),
                        "current_count": new_count,
                    },
                )
                raise

            return AdmissionDecision(
                admitted=True,
                user_id=user_id,
                current_count=new_count,
                limit=limit,
                attempts=attempts,
            )

    async def usage(self, user_id: str) -> tuple[str, int, int]:
        """Return (tier, limit, current_count) without creating a counter."""
        tier, limit = await self._resolver.resolve(user_id)
        counter = await self._counters.get(user_id)
        return tier, limit, counter.count if counter else 0
