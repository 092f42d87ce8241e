"""
Unit tests for the rate limiter HTTP surface.
"""

import time

import pytest
from fastapi.testclient import TestClient

from service_ratelimiter.app.main import RateLimiterService, build_demo_queue, create_app
from shared.errors import ConfigurationError


def wait_for_progress(client, predicate, timeout: float = 3.0, interval: float = 0.02):
    """Poll /ratelimit/progress until predicate accepts the body."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/ratelimit/progress").json()
        if predicate(body):
            return body
        time.sleep(interval)
    raise AssertionError("condition not met in time")


class TestRateLimiterService:
    """Test cases for RateLimiterService."""

    @pytest.fixture
    def service(self):
        """Service with small quotas and no buffer."""
        return RateLimiterService(
            rate_limit_per_second=5,
            rate_limit_per_minute=100,
            buffer_percentage=0,
        )

    @pytest.fixture
    def client(self, service):
        """Test client running the service lifespan."""
        with TestClient(service.app) as client:
            yield client

    def test_create_app(self):
        app = create_app()
        assert app.title == "Ratelimiter Service"

    def test_invalid_configuration_fails_fast(self):
        with pytest.raises(ConfigurationError):
            RateLimiterService(rate_limit_per_second=0)

    def test_health_reports_timers(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["dependencies"] == {"refill_timers": "running"}

    def test_snapshot(self, client):
        response = client.get("/ratelimit/snapshot")

        assert response.status_code == 200
        body = response.json()
        assert body["tokensPerSecondRemaining"] == 5.0
        assert body["tokensPerMinuteRemaining"] == 100.0
        assert 0.0 <= body["perSecondCountdownSeconds"] <= 1.0
        assert 0.0 <= body["perMinuteCountdownSeconds"] <= 60.0
        assert body["perMinuteCountdownLabel"].endswith("seconds")

    def test_progress_before_any_run(self, client):
        body = client.get("/ratelimit/progress").json()

        assert body["run_id"] is None
        assert body["running"] is False

    def test_demo_run_completes(self, client):
        response = client.post("/ratelimit/demo", json={"count": 3, "delay_ms": 0})

        assert response.status_code == 202
        run_id = response.json()["run_id"]

        progress = wait_for_progress(client, lambda b: b["completed"] == 3 and not b["running"])
        assert progress["run_id"] == run_id
        assert progress["pending"] == 0
        assert progress["failed"] == 0

        metrics = client.get("/metrics").text
        assert "tokens_acquired_total 3.0" in metrics

    def test_demo_conflict_and_cancel(self, client):
        first = client.post("/ratelimit/demo", json={"count": 50, "delay_ms": 0})
        assert first.status_code == 202

        wait_for_progress(client, lambda b: b["completed"] >= 1)

        second = client.post("/ratelimit/demo", json={"count": 1})
        assert second.status_code == 409
        assert second.json()["code"] == "RUN_CONFLICT"

        cancelled = client.post("/ratelimit/demo/cancel")
        assert cancelled.json() == {"cancelled": True}

        progress = wait_for_progress(client, lambda b: not b["running"])
        assert progress["cancelled"] is True
        assert progress["completed"] < 50

    def test_demo_rejects_invalid_payload(self, client):
        response = client.post("/ratelimit/demo", json={"count": -1})

        assert response.status_code == 422


class TestDemoQueue:
    """Synthetic demo producers."""

    @pytest.mark.asyncio
    async def test_producers_return_their_index(self):
        queue = build_demo_queue(4, 0)

        assert [await produce() for produce in queue] == [0, 1, 2, 3]
