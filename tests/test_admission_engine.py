"""Tests for the admission engine state machine and its retry loops."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.adapters.stores.base import CounterDocument, UpdateOutcome
from app.adapters.stores.in_memory import InMemoryConfigStore, InMemoryCounterStore
from app.core.errors import ConfigNotFoundError, DownstreamAppError, StoreUnavailableError
from app.schemas.tiers import TIER_LIMITS_KEY
from app.services.admission_service import AdmissionEngine
from app.services.quota_resolver import QuotaResolver


class InterleavingCounterStore(InMemoryCounterStore):
    """Yields to the event loop after every read so concurrent requests interleave."""

    async def get(self, key: str) -> CounterDocument | None:
        counter = await super().get(key)
        await asyncio.sleep(0)
        return counter


class RacingCounterStore(InMemoryCounterStore):
    """Lets a competing request win the first conditional update."""

    def __init__(self) -> None:
        super().__init__()
        self.raced = False

    async def conditional_update(self, key: str, version: str, count: int) -> UpdateOutcome:
        if not self.raced:
            self.raced = True
            await super().conditional_update(key, version, count)
        return await super().conditional_update(key, version, count)


class LostInsertCounterStore(InMemoryCounterStore):
    """The first read misses and another request creates the counter before our insert."""

    def __init__(self, competitor_count: int) -> None:
        super().__init__()
        self.competitor_count = competitor_count
        self.first_read = True

    async def get(self, key: str) -> CounterDocument | None:
        if self.first_read:
            self.first_read = False
            await super().insert_if_absent(key, self.competitor_count)
            return None
        return await super().get(key)


class AlwaysConflictingCounterStore(InMemoryCounterStore):
    async def conditional_update(self, key: str, version: str, count: int) -> UpdateOutcome:
        return UpdateOutcome.CONFLICT


def _engine(config_store, counter_store, forwarder, max_attempts=50) -> AdmissionEngine:
    return AdmissionEngine(
        resolver=QuotaResolver(config_store),
        counters=counter_store,
        forwarder=forwarder,
        max_attempts=max_attempts,
    )


class TestSequentialAdmission:
    """Single-request behaviour of the state machine."""

    @pytest.mark.asyncio
    async def test_gold_user_admitted_three_times_then_rejected(self, engine, counter_store, forwarder):
        counts = []
        for i in range(3):
            decision = await engine.admit("u1", {"user_id": "u1", "prompt": f"p{i}"})
            assert decision.admitted is True
            assert decision.limit == 3
            counts.append(decision.current_count)

        rejected = await engine.admit("u1", {"user_id": "u1", "prompt": "p3"})

        assert counts == [1, 2, 3]
        assert rejected.admitted is False
        assert rejected.current_count == 3
        assert (await counter_store.get("u1")).count == 3
        assert len(forwarder.sent) == 3

    @pytest.mark.asyncio
    async def test_counter_created_lazily_at_zero(self, engine, counter_store):
        assert await counter_store.get("u1") is None

        decision = await engine.admit("u1", {"user_id": "u1"})

        assert decision.current_count == 1
        assert decision.attempts == 1

    @pytest.mark.asyncio
    async def test_rejected_exactly_at_limit_not_below(self, engine, counter_store):
        await counter_store.insert_if_absent("u1", 2)
        below = await engine.admit("u1", {"user_id": "u1"})
        at_limit = await engine.admit("u1", {"user_id": "u1"})

        assert below.admitted is True
        assert below.current_count == 3
        assert at_limit.admitted is False

    @pytest.mark.asyncio
    async def test_zero_limit_tier_never_admits(self, engine, forwarder):
        decision = await engine.admit("u3", {"user_id": "u3"})

        assert decision.admitted is False
        assert decision.limit == 0
        assert forwarder.sent == []

    @pytest.mark.asyncio
    async def test_forward_payload_has_identity_stripped(self, engine, forwarder):
        payload = {"user_id": "u1", "prompt": "hello", "options": {"n": 1}}

        await engine.admit("u1", payload)

        assert forwarder.sent == [{"prompt": "hello", "options": {"n": 1}}]
        assert payload["user_id"] == "u1"


class TestLimitChanges:
    @pytest.mark.asyncio
    async def test_lowered_limit_rejects_users_already_above_it(self, engine, config_store, counter_store, forwarder):
        await config_store.put(TIER_LIMITS_KEY, {"gold": 10, "silver": 1, "bronze": 0})
        await counter_store.insert_if_absent("u1", 5)

        await config_store.put(TIER_LIMITS_KEY, {"gold": 3, "silver": 1, "bronze": 0})
        decision = await engine.admit("u1", {"user_id": "u1"})

        assert decision.admitted is False
        assert decision.current_count == 5
        assert (await counter_store.get("u1")).count == 5
        assert forwarder.sent == []

    @pytest.mark.asyncio
    async def test_reset_restarts_count_from_zero(self, engine, counter_store):
        for _ in range(3):
            await engine.admit("u1", {"user_id": "u1"})

        await counter_store.bulk_delete()
        decision = await engine.admit("u1", {"user_id": "u1"})

        assert decision.admitted is True
        assert decision.current_count == 1


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_unknown_user_fails_without_touching_counter(self, engine, counter_store, forwarder):
        with pytest.raises(ConfigNotFoundError) as exc_info:
            await engine.admit("ghost", {"user_id": "ghost"})

        assert exc_info.value.code == "user_not_found"
        assert await counter_store.get("ghost") is None
        assert forwarder.sent == []

    @pytest.mark.asyncio
    async def test_tier_without_limit_is_fatal(self, counter_store, forwarder):
        config_store = InMemoryConfigStore(
            initial={
                "user:u9": {"user_id": "u9", "tier": "platinum"},
                TIER_LIMITS_KEY: {"gold": 3},
            }
        )
        engine = _engine(config_store, counter_store, forwarder)

        with pytest.raises(ConfigNotFoundError) as exc_info:
            await engine.admit("u9", {"user_id": "u9"})

        assert exc_info.value.code == "tier_not_defined"

    @pytest.mark.asyncio
    async def test_missing_tier_table_is_fatal(self, counter_store, forwarder):
        config_store = InMemoryConfigStore(initial={"user:u1": {"user_id": "u1", "tier": "gold"}})
        engine = _engine(config_store, counter_store, forwarder)

        with pytest.raises(ConfigNotFoundError) as exc_info:
            await engine.admit("u1", {"user_id": "u1"})

        assert exc_info.value.code == "tier_limits_not_found"

    @pytest.mark.asyncio
    async def test_failed_forward_still_consumes_quota(self, engine, counter_store, forwarder):
        forwarder.status_code = 500

        with pytest.raises(DownstreamAppError) as exc_info:
            await engine.admit("u1", {"user_id": "u1"})

        assert exc_info.value.details["http_status"] == 500
        assert (await counter_store.get("u1")).count == 1
        assert len(forwarder.sent) == 1


class TestOptimisticConcurrency:
    @pytest.mark.asyncio
    async def test_lost_race_is_retried_against_fresh_counter(self, config_store, forwarder):
        counters = RacingCounterStore()
        engine = _engine(config_store, counters, forwarder)

        decision = await engine.admit("u2", {"user_id": "u2"})

        # The competitor consumed the only unit; the retry sees count=1 >= limit=1
        assert decision.admitted is False
        assert decision.attempts == 2
        assert (await counters.get("u2")).count == 1
        assert forwarder.sent == []

    @pytest.mark.asyncio
    async def test_lost_insert_reads_competitor_counter(self, config_store, forwarder):
        counters = LostInsertCounterStore(competitor_count=2)
        engine = _engine(config_store, counters, forwarder)

        decision = await engine.admit("u1", {"user_id": "u1"})

        assert decision.admitted is True
        assert decision.current_count == 3

    @pytest.mark.asyncio
    async def test_concurrent_pair_with_limit_one_admits_exactly_one(self, config_store, forwarder):
        counters = InterleavingCounterStore()
        engine = _engine(config_store, counters, forwarder)

        first, second = await asyncio.gather(
            engine.admit("u2", {"user_id": "u2", "n": 1}),
            engine.admit("u2", {"user_id": "u2", "n": 2}),
        )

        assert sorted([first.admitted, second.admitted]) == [False, True]
        assert (await counters.get("u2")).count == 1
        assert len(forwarder.sent) == 1

    @pytest.mark.asyncio
    async def test_many_concurrent_requests_never_exceed_limit(self, config_store, forwarder):
        counters = InterleavingCounterStore()
        engine = _engine(config_store, counters, forwarder, max_attempts=0)

        decisions = await asyncio.gather(
            *(engine.admit("u1", {"user_id": "u1", "n": i}) for i in range(20))
        )

        admitted = [d for d in decisions if d.admitted]
        assert len(admitted) == 3
        assert sorted(d.current_count for d in admitted) == [1, 2, 3]
        assert (await counters.get("u1")).count == len(admitted)
        assert len(forwarder.sent) == len(admitted)
        assert any(d.attempts > 1 for d in decisions)

    @pytest.mark.asyncio
    async def test_retry_bound_surfaces_store_unavailable(self, config_store, forwarder):
        engine = _engine(config_store, AlwaysConflictingCounterStore(), forwarder, max_attempts=3)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await engine.admit("u1", {"user_id": "u1"})

        assert exc_info.value.code == "contention_exhausted"
        assert exc_info.value.details["attempts"] == 3
        assert forwarder.sent == []


class TestUsage:
    @pytest.mark.asyncio
    async def test_usage_does_not_create_counter(self, engine, counter_store):
        tier, limit, current = await engine.usage("u1")

        assert (tier, limit, current) == ("gold", 3, 0)
        assert await counter_store.get("u1") is None

    @pytest.mark.asyncio
    async def test_usage_reports_current_count(self, engine):
        await engine.admit("u1", {"user_id": "u1"})

        assert await engine.usage("u1") == ("gold", 3, 1)

    @pytest.mark.asyncio
    async def test_usage_reads_user_account_once(self, engine, config_store):
        config_store.get = AsyncMock(wraps=config_store.get)  # type: ignore[method-assign]

        await engine.usage("u1")

        keys = [call.args[0] for call in config_store.get.await_args_list]
        assert keys.count("user:u1") == 1
