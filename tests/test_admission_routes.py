"""Tests for the admission API routes.

The app is built through ``create_app`` with a runtime factory that injects
in-memory stores, a recording forwarder, a fake tier source and a recording
timer, so the lifespan (activation, bootstrap reset) runs for real.
"""

from typing import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.adapters.stores.base import AbstractCounterStore
from app.adapters.stores.factory import StoreBundle
from app.adapters.stores.in_memory import InMemoryConfigStore
from app.core.app_factory import create_app
from app.core.config import Settings, settings
from app.core.errors import ConfigRefreshError
from app.core.runtime import GatewayRuntime, build_runtime
from app.services.scheduler import COUNTER_RESET_TASK, TIER_REFRESH_TASK

API_KEY_HEADERS = {"X-API-Key": "test-api-key-123"}


@pytest.fixture
def client(
    counter_store: AbstractCounterStore,
    forwarder,
    tier_source,
    timer,
) -> Iterator[TestClient]:
    config = InMemoryConfigStore(
        initial={
            "user:u1": {"user_id": "u1", "tier": "gold"},
            "user:u2": {"user_id": "u2", "tier": "silver"},
            "user:orphan": {"user_id": "orphan", "tier": "diamond"},
        }
    )

    def runtime_factory(cfg: Settings) -> GatewayRuntime:
        return build_runtime(
            cfg,
            stores=StoreBundle(config=config, counters=counter_store),
            forwarder=forwarder,
            tier_source=tier_source,
            timer=timer,
        )

    app = create_app(settings, runtime_factory=runtime_factory)
    with TestClient(app) as test_client:
        yield test_client


class TestSubmitRequest:
    def test_admits_until_tier_limit_then_429(self, client: TestClient, forwarder) -> None:
        counts = []
        for i in range(3):
            response = client.post(
                "/v1/requests", json={"user_id": "u1", "prompt": f"p{i}"}, headers=API_KEY_HEADERS
            )
            assert response.status_code == 200
            body = response.json()
            assert body["admitted"] is True
            assert body["limit"] == 3
            counts.append(body["current_count"])

        rejected = client.post("/v1/requests", json={"user_id": "u1"}, headers=API_KEY_HEADERS)

        assert counts == [1, 2, 3]
        assert rejected.status_code == 429
        assert rejected.headers["X-RateLimit-Limit"] == "3"
        assert rejected.headers["X-RateLimit-Remaining"] == "0"
        assert [payload["prompt"] for payload in forwarder.sent] == ["p0", "p1", "p2"]
        assert all("user_id" not in payload for payload in forwarder.sent)

    def test_missing_identity_is_400(self, client: TestClient, forwarder) -> None:
        response = client.post("/v1/requests", json={"prompt": "hi"}, headers=API_KEY_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "user_id_missing"
        assert forwarder.sent == []

    def test_unknown_user_is_404(self, client: TestClient) -> None:
        response = client.post("/v1/requests", json={"user_id": "nobody"}, headers=API_KEY_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "user_not_found"

    def test_user_with_undefined_tier_is_404(self, client: TestClient) -> None:
        response = client.post("/v1/requests", json={"user_id": "orphan"}, headers=API_KEY_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "tier_not_defined"

    def test_downstream_failure_is_502_and_consumes_quota(
        self, client: TestClient, forwarder
    ) -> None:
        forwarder.status_code = 503

        response = client.post("/v1/requests", json={"user_id": "u2"}, headers=API_KEY_HEADERS)
        usage = client.get("/v1/usage/u2", headers=API_KEY_HEADERS)

        assert response.status_code == 502
        assert response.json()["error"]["details"]["http_status"] == 503
        assert usage.json()["current_count"] == 1
        assert usage.json()["remaining"] == 0

    def test_missing_api_key_is_403(self, client: TestClient, forwarder) -> None:
        response = client.post("/v1/requests", json={"user_id": "u1"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "missing_api_key"
        assert forwarder.sent == []

    def test_invalid_api_key_is_403(self, client: TestClient) -> None:
        response = client.post(
            "/v1/requests", json={"user_id": "u1"}, headers={"X-API-Key": "nope"}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "invalid_api_key"


class TestLifespan:
    def test_activation_loads_tiers_and_arms_both_jobs(self, client: TestClient, timer, tiers) -> None:
        response = client.get("/v1/tiers", headers=API_KEY_HEADERS)

        assert response.status_code == 200
        assert response.json() == tiers
        assert set(timer.scheduled) == {TIER_REFRESH_TASK, COUNTER_RESET_TASK}

    @pytest.mark.asyncio
    async def test_failed_activation_still_releases_resources(
        self, config_store, counter_store, forwarder, tier_source, timer
    ) -> None:
        tier_source.fail = True
        close_stores = AsyncMock()

        def runtime_factory(cfg: Settings) -> GatewayRuntime:
            return build_runtime(
                cfg,
                stores=StoreBundle(config=config_store, counters=counter_store, close=close_stores),
                forwarder=forwarder,
                tier_source=tier_source,
                timer=timer,
            )

        app = create_app(settings, runtime_factory=runtime_factory)

        with pytest.raises(ConfigRefreshError):
            async with app.router.lifespan_context(app):
                pass

        close_stores.assert_awaited_once()
        assert timer.scheduled == {}

    def test_reset_job_opens_new_window(self, client: TestClient, timer) -> None:
        client.post("/v1/requests", json={"user_id": "u2"}, headers=API_KEY_HEADERS)
        assert client.post("/v1/requests", json={"user_id": "u2"}, headers=API_KEY_HEADERS).status_code == 429

        client.portal.call(timer.fire, COUNTER_RESET_TASK)

        response = client.post("/v1/requests", json={"user_id": "u2"}, headers=API_KEY_HEADERS)
        assert response.status_code == 200
        assert response.json()["current_count"] == 1

    def test_usage_reports_tier_and_remaining(self, client: TestClient) -> None:
        client.post("/v1/requests", json={"user_id": "u1"}, headers=API_KEY_HEADERS)

        response = client.get("/v1/usage/u1", headers=API_KEY_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "user_id": "u1",
            "tier": "gold",
            "limit": 3,
            "current_count": 1,
            "remaining": 2,
        }


class TestHealth:
    def test_readiness_after_activation(self, client: TestClient) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_liveness_needs_no_api_key(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}
