"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set here before any import of ``app.core.config``
so the global settings object is built with test values.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_ACTIVATION_REASON", "deploy")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timezone
from typing import Any

import pytest

from app.adapters.forwarder.base import AbstractForwarder
from app.adapters.stores.in_memory import InMemoryConfigStore, InMemoryCounterStore
from app.adapters.tier_source.base import AbstractTierSource
from app.core.errors import ConfigRefreshError
from app.schemas.tiers import TIER_LIMITS_KEY, user_key
from app.services.admission_service import AdmissionEngine
from app.services.quota_resolver import QuotaResolver
from app.services.scheduler import AbstractTimer, TimerCallback

FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingForwarder(AbstractForwarder):
    """Forwarder that records payloads and answers a fixed status."""

    def __init__(self, status_code: int = 200) -> None:
        super().__init__(user_id_field="user_id")
        self.status_code = status_code
        self.sent: list[dict[str, Any]] = []

    async def send(self, payload: dict[str, Any]) -> int:
        self.sent.append(payload)
        return self.status_code


class FakeTierSource(AbstractTierSource):
    """Tier source serving a mutable table, or failing on demand."""

    def __init__(self, tiers: dict[str, int] | None = None) -> None:
        self.tiers = dict(tiers or {})
        self.fail = False
        self.calls = 0

    async def fetch_tiers(self) -> dict[str, int]:
        self.calls += 1
        if self.fail:
            raise ConfigRefreshError(code="tiers_bad_status", message="Tier source returned status 500")
        return dict(self.tiers)


class RecordingTimer(AbstractTimer):
    """Timer that records scheduled runs; tests fire them explicitly."""

    def __init__(self) -> None:
        self.scheduled: dict[str, tuple[TimerCallback, datetime]] = {}
        self.history: list[tuple[str, datetime]] = []

    def schedule_once(self, callback: TimerCallback, when: datetime, task_name: str) -> None:
        self.scheduled[task_name] = (callback, when)
        self.history.append((task_name, when))

    def cancel_all(self) -> None:
        self.scheduled.clear()

    async def fire(self, task_name: str) -> None:
        callback, _ = self.scheduled.pop(task_name)
        await callback()


def config_documents(users: dict[str, str], tiers: dict[str, int] | None) -> dict[str, dict]:
    """Build initial config store contents: users mapped to tiers, plus the tier table."""
    docs: dict[str, dict] = {
        user_key(user_id): {"user_id": user_id, "tier": tier} for user_id, tier in users.items()
    }
    if tiers is not None:
        docs[TIER_LIMITS_KEY] = dict(tiers)
    return docs


@pytest.fixture
def tiers() -> dict[str, int]:
    return {"gold": 3, "silver": 1, "bronze": 0}


@pytest.fixture
def config_store(tiers: dict[str, int]) -> InMemoryConfigStore:
    return InMemoryConfigStore(
        initial=config_documents({"u1": "gold", "u2": "silver", "u3": "bronze"}, tiers)
    )


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def forwarder() -> RecordingForwarder:
    return RecordingForwarder()


@pytest.fixture
def tier_source(tiers: dict[str, int]) -> FakeTierSource:
    return FakeTierSource(tiers)


@pytest.fixture
def timer() -> RecordingTimer:
    return RecordingTimer()


@pytest.fixture
def engine(
    config_store: InMemoryConfigStore,
    counter_store: InMemoryCounterStore,
    forwarder: RecordingForwarder,
) -> AdmissionEngine:
    return AdmissionEngine(
        resolver=QuotaResolver(config_store),
        counters=counter_store,
        forwarder=forwarder,
        max_attempts=50,
    )


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
