"""
HTTP surface tests: routes, envelopes and status codes, with the services
bound to an in-memory database through dependency overrides.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from shop_agent.core.exceptions import PersistenceError
from shop_agent.core.resilience import ResilienceManager
from shop_agent.database import build_engine
from shop_agent.dependencies import (
    get_action_executor, get_cache, get_job_manager, get_rate_limiter, get_resilience, get_subscription
)
from shop_agent.domain.analysis import EntityAnalysis, Suggestion
from shop_agent.main import app
from shop_agent.repositories.cache_repo import CacheRepository
from shop_agent.repositories.circuit_repo import CircuitBreakerRepository
from shop_agent.repositories.rate_limit_repo import RateLimitRepository
from shop_agent.services.cache import CacheService
from shop_agent.services.rate_limiter import RateLimiter


@pytest.fixture
def client(db, job_manager, executor, subscription, settings_store):
    resilience = ResilienceManager(store=CircuitBreakerRepository(db))
    cache = CacheService(CacheRepository(db))
    limiter = RateLimiter(settings_store, RateLimitRepository(db))

    app.dependency_overrides[get_job_manager] = lambda: job_manager
    app.dependency_overrides[get_action_executor] = lambda: executor
    app.dependency_overrides[get_subscription] = lambda: subscription
    app.dependency_overrides[get_resilience] = lambda: resilience
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def discount_action(executor):
    executor.create_from_suggestions(EntityAnalysis(
        analysis_id=1, entity_id=5, entity_type="product", success=True,
        suggestions=[Suggestion(type="create_discount", priority=60, data={"discount_percent": 10})],
    ))
    return executor.repo.list()[0]


class TestJobRoutes:

    def test_start_poll_and_finish(self, client):
        started = client.post("/agent/jobs/start", json={"type": "products"})
        assert started.status_code == 200
        body = started.json()
        assert body["success"] is True
        assert body["message"] == "Analysis started. 7 items queued."

        for _ in range(3):
            processed = client.post("/agent/jobs/process").json()
        assert processed["data"]["status"] == "completed"

        progress = client.get("/agent/jobs/progress").json()["data"]
        assert progress["products_analyzed"] == 7

        assert client.post("/agent/jobs/acknowledge").json()["data"]["status"] == "completed"
        assert client.get("/agent/jobs/progress").json()["data"]["status"] == "idle"

    def test_start_defaults_to_all(self, client):
        assert client.post("/agent/jobs/start").json()["data"]["type"] == "all"

    def test_conflict(self, client):
        client.post("/agent/jobs/start")

        response = client.post("/agent/jobs/start")

        assert response.status_code == 409
        assert response.json()["error_code"] == "JOB_CONFLICT"
        assert response.json()["retryable"] is False

    def test_bad_type(self, client):
        response = client.post("/agent/jobs/start", json={"type": "orders"})
        assert response.status_code == 400

    def test_batch_size_is_validated(self, client):
        response = client.post("/agent/jobs/process", json={"batch_size": 0})
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_explicit_batch_size(self, client):
        client.post("/agent/jobs/start", json={"type": "products"})
        data = client.post("/agent/jobs/process", json={"batch_size": 5}).json()["data"]
        assert data["products_analyzed"] == 5

    def test_cancel_without_job(self, client):
        assert client.post("/agent/jobs/cancel").status_code == 400

    def test_resume_and_reset(self, client):
        client.post("/agent/jobs/start")
        assert client.post("/agent/jobs/resume").json()["message"] == "No stale job"
        assert client.post("/agent/jobs/reset").json()["data"]["status"] == "idle"

    def test_start_is_rate_limited_per_client(self, client, settings_store):
        settings_store.set("rate_limit_per_hour", 1)
        client.post("/agent/jobs/start")

        response = client.post("/agent/jobs/start")

        assert response.status_code == 429
        assert response.json()["error_code"] == "RATE_LIMIT_EXCEEDED"
        assert "Retry-After" in response.headers


class TestActionRoutes:

    def test_list_and_get(self, client, discount_action):
        listed = client.get("/agent/actions", params={"status": "pending"}).json()["data"]
        assert listed["count"] == 1

        single = client.get(f"/agent/actions/{discount_action.id}").json()["data"]
        assert single["action_type"] == "create_discount"
        assert single["requires_approval"] is True

    def test_missing_action(self, client):
        response = client.get("/agent/actions/999")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_approve_then_execute(self, client, discount_action, store):
        blocked = client.post(f"/agent/actions/{discount_action.id}/execute")
        assert blocked.status_code == 400

        approved = client.post(f"/agent/actions/{discount_action.id}/approve", json={"approved_by": "lee"})
        assert approved.json()["data"]["approved_by"] == "lee"

        executed = client.post(f"/agent/actions/{discount_action.id}/execute")
        assert executed.status_code == 200
        assert executed.json()["data"]["status"] == "completed"
        assert len(store.coupons) == 1

    def test_dismiss(self, client, discount_action):
        assert client.post(f"/agent/actions/{discount_action.id}/dismiss").json()["data"]["status"] == "cancelled"

    def test_bulk_routes(self, client, discount_action):
        assert client.post("/agent/actions/approve-all").json()["data"] == {"count": 1}
        assert client.post("/agent/actions/dismiss-all", json={"statuses": ["approved"]}).json()["data"] == {"count": 1}
        rejected = client.post("/agent/actions/dismiss-all", json={"statuses": ["completed"]})
        assert rejected.status_code == 400

    def test_execute_approved(self, client, discount_action):
        client.post(f"/agent/actions/{discount_action.id}/approve")

        result = client.post("/agent/actions/execute-approved", json={"limit": 5}).json()

        assert result["data"]["executed"] == 1

    def test_run_direct_action(self, client, store):
        response = client.post("/agent/actions/run", json={
            "action_type": "send_email",
            "data": {"email": "ops@example.com", "subject": "Report", "message": "All good"},
        })

        assert response.status_code == 200
        assert store.sent_emails[-1]["to"] == "ops@example.com"

    def test_run_invalid_payload(self, client):
        response = client.post("/agent/actions/run", json={"action_type": "send_email", "data": {}})

        assert response.status_code == 400
        assert "Missing required field: subject" in response.json()["errors"]

    def test_types(self, client):
        types = client.get("/agent/actions/types").json()["data"]
        assert types["create_discount"]["enabled"] is True
        assert types["send_sms"]["enabled"] is False

    def test_stats_fall_back_to_last_good_read(self, client, discount_action, action_repo):
        fresh = client.get("/agent/actions/stats").json()["data"]
        assert fresh["source"] == "primary"
        assert fresh["total"] == 1

        with patch.object(action_repo, "stats", side_effect=PersistenceError("db down")):
            degraded = client.get("/agent/actions/stats").json()["data"]

        assert degraded["source"] == "cache_fallback"
        assert degraded["total"] == 1

    def test_stats_are_served_while_the_database_is_unreachable(self, client, discount_action, db, monkeypatch):
        assert client.get("/agent/actions/stats").json()["data"]["source"] == "primary"

        monkeypatch.setattr(db, "engine", build_engine("sqlite:////nonexistent-dir/shop.db"))
        response = client.get("/agent/actions/stats")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["source"] == "cache_fallback"
        assert data["total"] == 1


def test_health(client):
    body = client.get("/health").json()

    assert body["data"]["status"] == "ok"
    assert body["data"]["tier"] == "enterprise"
    assert body["data"]["usage"]["analyses_per_day"]["remaining"] == -1
