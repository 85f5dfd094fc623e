"""Tests for RequestRouter.

Tests cover:
- Cache idempotence (second identical request is free and never dispatched)
  and one hit or miss counted per request
- Cost limit refusal without a provider call
- Emergency routing to the zero-cost provider and stretched cache TTLs
- Spend charged to both agent and task-type budgets
- COST_SAVINGS events
- Batches: input order kept, failures isolated, priority order per provider,
  pauses between sub-batches
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conductor.events import EventTopic
from conductor.model_router.dispatch import ProviderError
from conductor.model_router.requests import (
    COST_LIMIT_MESSAGE,
    Priority,
    RouteRequest,
    RouteStatus,
)
from conductor.model_router.router import RequestRouter


# ------------------------------------------------------------------ #
# Single requests
# ------------------------------------------------------------------ #


class TestSingleRequest:
    @pytest.mark.asyncio
    async def test_first_request_dispatches(self, router, fake_client, ledger):
        response = await router.send_message(
            "task-1",
            RouteRequest(prompt="Review auth.py for injection flaws.", agent_name="SecurityAgent",
                         task_type="code_review"),
        )
        assert response.status == RouteStatus.OK
        assert response.ok
        assert not response.cache_hit
        assert response.content == "SecurityAgent handled code_review"
        assert len(fake_client.calls) == 1
        assert len(ledger) == 1
        assert ledger.records[0].prompt_hash

    @pytest.mark.asyncio
    async def test_identical_request_served_from_cache(self, router, fake_client):
        request = RouteRequest(prompt="Explain the retry loop in worker.py.", agent_name="DeveloperAgent")
        first = await router.route(request)
        second = await router.route(request)

        assert first.status == RouteStatus.OK
        assert second.status == RouteStatus.CACHED
        assert second.cache_hit
        assert second.cost == 0.0
        assert second.tokens_used == 0
        assert second.content == first.content
        assert len(fake_client.calls) == 1

    @pytest.mark.asyncio
    async def test_one_cache_lookup_counted_per_request(self, router, cache):
        # Optimisation strips the filler, so raw and optimised keys differ
        request = RouteRequest(prompt="Please note that the retry loop needs review.",
                               agent_name="DeveloperAgent")
        await router.route(request)
        second = await router.route(request)

        assert second.status == RouteStatus.CACHED
        stats = cache.stats()
        assert (stats["hits"], stats["misses"]) == (1, 1)
        assert stats["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_oversized_prompt_without_keywords_still_dispatched(self, router, fake_client):
        response = await router.route(RouteRequest(prompt="word " * 2500, agent_name="DeveloperAgent"))

        assert response.status == RouteStatus.OK
        sent = fake_client.calls[0]["prompt"]
        assert sent
        assert set(sent.split()) == {"word"}
        assert response.optimized_token_estimate == 2000

    @pytest.mark.asyncio
    async def test_cost_limit_refuses_without_dispatch(self, router, fake_client, ledger):
        response = await router.route(
            RouteRequest(
                prompt="Analyze the dependency graph of the billing service.",
                agent_name="TechLeadAgent",
                task_type="code_analysis",
                cost_limit=0.0001,
            )
        )
        assert response.status == RouteStatus.COST_LIMITED
        assert response.content == COST_LIMIT_MESSAGE
        assert response.provider == "claude"
        assert response.cost == 0.0
        assert not response.ok
        assert fake_client.calls == []
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_task_type_ttl_rule_outlives_default(
        self, catalog, cache, ledger, budget, events, fake_client, clock
    ):
        router = RequestRouter(
            catalog=catalog, client=fake_client, cache=cache, ledger=ledger, budget=budget,
            events=events, default_cache_ttl_seconds=3600, cache_ttl_rules={"general": 6 * 3600},
        )
        request = RouteRequest(prompt="Summarise the changelog.", agent_name="DeveloperAgent")
        await router.route(request)
        clock.advance(2 * 3600)

        again = await router.route(request)
        assert again.status == RouteStatus.CACHED
        assert len(fake_client.calls) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(
        self, catalog, cache, ledger, budget, events, make_client
    ):
        router = RequestRouter(
            catalog=catalog,
            client=make_client(fail_agents={"TesterAgent"}),
            cache=cache,
            ledger=ledger,
            budget=budget,
            events=events,
        )
        with pytest.raises(ProviderError):
            await router.send_message("t", RouteRequest(prompt="Write tests.", agent_name="TesterAgent"))
        assert len(ledger) == 0


# ------------------------------------------------------------------ #
# Budgets
# ------------------------------------------------------------------ #


class TestBudgetIntegration:
    @pytest.mark.asyncio
    async def test_spend_charged_to_agent_and_task_type(self, router, budget):
        response = await router.route(
            RouteRequest(prompt="Implement the parser.", agent_name="DeveloperAgent",
                         task_type="code_generation")
        )
        assert response.cost > 0
        assert budget.get_state("DeveloperAgent").spent_today == pytest.approx(response.cost)
        assert budget.get_state("code_generation").spent_today == pytest.approx(response.cost)

    @pytest.mark.asyncio
    async def test_emergency_mode_forces_zero_cost_provider(self, router, budget, fake_client):
        budget.record_spend("DeveloperAgent", 4.60)

        response = await router.route(
            RouteRequest(prompt="Implement the parser.", agent_name="DeveloperAgent",
                         task_type="code_analysis")
        )
        assert response.provider == "ollama"
        assert response.cost == 0.0
        assert fake_client.calls[0]["provider"] == "ollama"

    @pytest.mark.asyncio
    async def test_emergency_mode_stretches_cache_ttl(self, router, budget, clock, fake_client):
        budget.record_spend("DeveloperAgent", 5.0)
        request = RouteRequest(prompt="Summarise the module.", agent_name="DeveloperAgent",
                               cache_ttl_seconds=10)
        await router.route(request)
        clock.advance(20)

        again = await router.route(request)
        assert again.status == RouteStatus.CACHED
        assert len(fake_client.calls) == 1

    @pytest.mark.asyncio
    async def test_emergency_cost_control_defaults_to_budgeted_identifiers(self, router, budget):
        assert await router.emergency_cost_control(9.5, 10.0)
        assert budget.emergency_identifiers() == ["DeveloperAgent"]

    @pytest.mark.asyncio
    async def test_set_cost_budget_validates(self, router):
        with pytest.raises(ValueError):
            await router.set_cost_budget("TesterAgent", -1)

    @pytest.mark.asyncio
    async def test_metrics_include_cache_and_budgets(self, router):
        await router.route(RouteRequest(prompt="Do a thing.", agent_name="DeveloperAgent"))
        metrics = router.get_real_time_metrics()
        assert metrics["cache"]["size"] == 1
        assert metrics["emergency_mode"] == []
        assert [b["identifier"] for b in metrics["budgets"]] == ["DeveloperAgent"]
        assert metrics["daily_cost"] > 0


# ------------------------------------------------------------------ #
# Events
# ------------------------------------------------------------------ #


class TestCostSavingsEvents:
    @pytest.mark.asyncio
    async def test_cost_savings_published_per_dispatch(self, router, events):
        received = []
        with events.subscribe(EventTopic.COST_SAVINGS, received.append):
            await router.route(
                RouteRequest(
                    prompt="Please note that it is important to fix the login bug.",
                    agent_name="DeveloperAgent",
                    task_type="debugging",
                )
            )
        assert len(received) == 1
        assert received[0].agent_name == "DeveloperAgent"
        assert received[0].result.tokens_saved > 0

    @pytest.mark.asyncio
    async def test_raw_cache_hit_publishes_nothing(self, router, events):
        request = RouteRequest(prompt="Fix it.", agent_name="DeveloperAgent")
        await router.route(request)
        received = []
        with events.subscribe(EventTopic.COST_SAVINGS, received.append):
            await router.route(request)
        assert received == []


# ------------------------------------------------------------------ #
# Batching
# ------------------------------------------------------------------ #


class TestBatching:
    @pytest.mark.asyncio
    async def test_responses_keep_input_order_and_isolate_failures(
        self, catalog, cache, ledger, budget, events, make_client
    ):
        client = make_client(fail_agents={"TesterAgent"})
        router = RequestRouter(
            catalog=catalog, client=client, cache=cache, ledger=ledger, budget=budget,
            events=events, sleep=AsyncMock(),
        )
        responses = await router.batch_optimized_requests(
            [
                RouteRequest(prompt="First job.", agent_name="DeveloperAgent"),
                RouteRequest(prompt="Second job.", agent_name="TesterAgent"),
                RouteRequest(prompt="Third job.", agent_name="SecurityAgent"),
            ]
        )
        assert [r.status for r in responses] == [RouteStatus.OK, RouteStatus.FAILED, RouteStatus.OK]
        assert "TesterAgent" in responses[1].error
        assert responses[0].content == "DeveloperAgent handled general"
        assert responses[2].content == "SecurityAgent handled general"

    @pytest.mark.asyncio
    async def test_priority_orders_dispatch_within_provider(self, router, budget, fake_client):
        # Emergency mode pins everything to ollama, whose batch size is 1
        budget.record_spend("DeveloperAgent", 5.0)
        responses = await router.batch_optimized_requests(
            [
                RouteRequest(prompt="Low job.", agent_name="DeveloperAgent", priority=Priority.LOW),
                RouteRequest(prompt="Critical job.", agent_name="DeveloperAgent",
                             priority=Priority.CRITICAL),
                RouteRequest(prompt="Medium job.", agent_name="DeveloperAgent"),
            ]
        )
        assert [c["prompt"] for c in fake_client.calls] == ["Critical job.", "Medium job.", "Low job."]
        assert [r.provider for r in responses] == ["ollama"] * 3

    @pytest.mark.asyncio
    async def test_pause_between_sub_batches(self, catalog, cache, ledger, budget, events, fake_client):
        sleep = AsyncMock()
        router = RequestRouter(
            catalog=catalog, client=fake_client, cache=cache, ledger=ledger, budget=budget,
            events=events, sleep=sleep,
        )
        requests = [
            RouteRequest(prompt=f"Analyze module {n}.", agent_name="TechLeadAgent",
                         task_type="code_analysis")
            for n in range(4)
        ]
        responses = await router.batch_optimized_requests(requests)

        assert [r.provider for r in responses] == ["claude"] * 4
        # claude batches three at a time: one pause between the two sub-batches
        sleep.assert_awaited_once_with(1.5)

    @pytest.mark.asyncio
    async def test_empty_batch(self, router):
        assert await router.batch_optimized_requests([]) == []
