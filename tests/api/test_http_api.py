"""Tests for the HTTP API.

The app is built with a container whose provider client is a fake, and the
lifespan is entered explicitly so startup and shutdown run as in production.

Tests cover:
- Health check
- Orchestration and recommendation endpoints (including 404 / 422)
- Message routing, caching and batch endpoints (including 502)
- Budget, speed threshold and metrics endpoints
- Agent listing with filters
- State persisted on shutdown
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conductor.container import build_container
from conductor.main import create_app

TASK = "analyze and test the payment module"


@pytest.fixture
def container(settings, make_client):
    return build_container(settings, provider_client=make_client(fail_agents={"BrokenAgent"}))


@pytest_asyncio.fixture
async def app(settings, container):
    test_app = create_app(settings, container=container)
    async with test_app.router.lifespan_context(test_app):
        yield test_app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ------------------------------------------------------------------ #
# Health
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["agents"] == 6


# ------------------------------------------------------------------ #
# Orchestration
# ------------------------------------------------------------------ #


class TestOrchestrationEndpoints:
    @pytest.mark.asyncio
    async def test_orchestrate(self, client):
        response = await client.post(
            "/api/v1/orchestrations", json={"task_description": TASK, "priority": "high"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["orchestration_id"].startswith("orch_")
        assert body["orchestration_summary"]["primary_agent"] == "DeveloperAgent"
        assert body["orchestration_summary"]["total_steps"] == 5
        assert body["orchestration_summary"]["successful_steps"] == 5
        assert "expert_review" in body["results"]

    @pytest.mark.asyncio
    async def test_no_suitable_agent_is_404(self, client):
        response = await client.post("/api/v1/orchestrations", json={"task_description": "zzz qqq"})
        assert response.status_code == 404
        assert "No suitable agents found" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_empty_task_is_422(self, client):
        response = await client.post("/api/v1/orchestrations", json={"task_description": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_priority_is_422(self, client):
        response = await client.post(
            "/api/v1/orchestrations", json={"task_description": TASK, "priority": "urgent"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_recommendations(self, client):
        response = await client.post(
            "/api/v1/recommendations",
            json={"task_description": TASK, "context": {"exclude_agents": ["TesterAgent"]}},
        )
        assert response.status_code == 200
        names = [r["agent_name"] for r in response.json()["recommendations"]]
        assert names == ["DeveloperAgent", "SecurityAgent"]


# ------------------------------------------------------------------ #
# Routing
# ------------------------------------------------------------------ #


class TestMessageEndpoints:
    @pytest.mark.asyncio
    async def test_second_identical_message_is_cached(self, client):
        payload = {"prompt": "Explain the retry loop.", "agent_name": "DeveloperAgent", "task_id": "t-1"}
        first = await client.post("/api/v1/messages", json=payload)
        second = await client.post("/api/v1/messages", json=payload)

        assert first.status_code == 200
        assert first.json()["task_id"] == "t-1"
        assert first.json()["status"] == "ok"
        assert second.json()["status"] == "cached"
        assert second.json()["cost"] == 0.0

    @pytest.mark.asyncio
    async def test_generated_task_id(self, client):
        response = await client.post("/api/v1/messages", json={"prompt": "Hello there."})
        assert response.json()["task_id"].startswith("task_")

    @pytest.mark.asyncio
    async def test_cost_limited_message(self, client):
        response = await client.post(
            "/api/v1/messages",
            json={"prompt": "Analyze the module.", "task_type": "code_analysis", "cost_limit": 0},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cost_limited"

    @pytest.mark.asyncio
    async def test_provider_failure_is_502(self, client):
        response = await client.post(
            "/api/v1/messages", json={"prompt": "Do it.", "agent_name": "BrokenAgent"}
        )
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_batch(self, client):
        response = await client.post(
            "/api/v1/messages/batch",
            json={
                "requests": [
                    {"prompt": "One.", "agent_name": "DeveloperAgent"},
                    {"prompt": "Two.", "agent_name": "BrokenAgent"},
                ]
            },
        )
        assert response.status_code == 200
        assert [r["status"] for r in response.json()["responses"]] == ["ok", "failed"]

    @pytest.mark.asyncio
    async def test_empty_batch_is_422(self, client):
        response = await client.post("/api/v1/messages/batch", json={"requests": []})
        assert response.status_code == 422


# ------------------------------------------------------------------ #
# Budgets and metrics
# ------------------------------------------------------------------ #


class TestBudgetEndpoints:
    @pytest.mark.asyncio
    async def test_set_budget(self, client, settings):
        response = await client.put("/api/v1/budgets/code_review", json={"daily_budget": 7.5})
        assert response.status_code == 200
        assert response.json()["daily_budget"] == 7.5
        assert (settings.state_dir / "cost_config.json").exists()

    @pytest.mark.asyncio
    async def test_non_positive_budget_is_422(self, client):
        response = await client.put("/api/v1/budgets/code_review", json={"daily_budget": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_set_speed_threshold(self, client, container):
        response = await client.put(
            "/api/v1/speed-thresholds/code_review", json={"max_response_time_ms": 1500}
        )
        assert response.status_code == 200
        assert container.router.budget.speed_threshold("code_review") == 1500

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.post("/api/v1/messages", json={"prompt": "Hello there."})
        response = await client.get("/api/v1/metrics")
        assert response.status_code == 200
        body = response.json()
        assert body["cache"]["size"] == 1
        assert body["emergency_mode"] == []
        assert "DeveloperAgent" in [b["identifier"] for b in body["budgets"]]


# ------------------------------------------------------------------ #
# Agents
# ------------------------------------------------------------------ #


class TestAgentEndpoints:
    @pytest.mark.asyncio
    async def test_list_all(self, client):
        body = (await client.get("/api/v1/agents")).json()
        assert len(body["agents"]) == 6
        assert body["statistics"]["total_agents"] == 6
        assert "DeveloperAgent" in body["collaboration_graph"]

    @pytest.mark.asyncio
    async def test_filter_by_capability(self, client):
        body = (await client.get("/api/v1/agents", params={"capability": "code_review"})).json()
        assert [a["name"] for a in body["agents"]] == ["SecurityAgent", "TechLeadAgent"]


# ------------------------------------------------------------------ #
# Lifecycle and errors
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_cache_saved_on_shutdown(settings, container):
    app = create_app(settings, container=container)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            await ac.post("/api/v1/messages", json={"prompt": "Persist me."})
    assert (settings.state_dir / "response_cache.json").exists()


@pytest.mark.asyncio
async def test_unhandled_error_is_500(app, container, monkeypatch):
    def explode():
        raise RuntimeError("metrics exploded")

    monkeypatch.setattr(container.router, "get_real_time_metrics", explode)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/api/v1/metrics")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
