"""
Shared test fixtures for pytest.

- settings: Test configuration rooted in a temporary project directory
- clock / day_clock: Controllable epoch and UTC-datetime clocks
- fake_client: ProviderClient double that never touches the network
- catalog, cache, ledger, budget, events: Routing building blocks
- router: RequestRouter wired from the above
- registry: AgentRegistry loaded with the built-in agents
- planner, executor, orchestrator: Orchestration stack over the fake provider
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conductor.agent.defaults import DEFAULT_AGENTS
from conductor.agent.registry import AgentRegistry
from conductor.config import Environment, Settings, get_settings
from conductor.events import EventBus
from conductor.model_router.budget import BudgetController
from conductor.model_router.cache import ResponseCache
from conductor.model_router.dispatch import ProviderError, ProviderResult
from conductor.model_router.ledger import UsageLedger
from conductor.model_router.providers import ProviderCatalog, ProviderProfile, estimate_tokens
from conductor.model_router.router import RequestRouter
from conductor.orchestration.executor import PlanExecutor
from conductor.orchestration.orchestrator import AgentOrchestrator
from conductor.orchestration.planner import ExecutionPlanner
from conductor.telemetry.logging import clear_context


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Clocks
# ------------------------------------------------------------------ #

class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_767_268_800.0) -> None:  # 2026-01-01T12:00:00Z
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDayClock:
    """UTC datetime clock for budget windows."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def day_clock() -> FakeDayClock:
    return FakeDayClock()


# ------------------------------------------------------------------ #
# Provider boundary
# ------------------------------------------------------------------ #

class FakeProviderClient:
    """Records every call and answers deterministically.

    Args:
        fail_agents: Calls made for these agents raise ProviderError
        hang_agents: Calls made for these agents never finish
        fail_providers: Calls made to these providers raise ProviderError
        delay: Seconds to sleep before answering
        output_tokens: Completion tokens reported per call
    """

    def __init__(
        self,
        fail_agents: set[str] | None = None,
        hang_agents: set[str] | None = None,
        fail_providers: set[str] | None = None,
        delay: float = 0.0,
        output_tokens: int = 10,
    ) -> None:
        self.fail_agents = fail_agents or set()
        self.hang_agents = hang_agents or set()
        self.fail_providers = fail_providers or set()
        self.delay = delay
        self.output_tokens = output_tokens
        self.calls: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(
        self,
        provider: ProviderProfile,
        prompt: str,
        *,
        agent_name: str,
        task_type: str,
        timeout_seconds: float,
    ) -> ProviderResult:
        self.calls.append(
            {
                "provider": provider.name,
                "prompt": prompt,
                "agent_name": agent_name,
                "task_type": task_type,
                "timeout_seconds": timeout_seconds,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if agent_name in self.hang_agents:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if agent_name in self.fail_agents:
                raise ProviderError(provider.name, f"upstream failure for {agent_name}")
            if provider.name in self.fail_providers:
                raise ProviderError(provider.name, "provider unavailable")
            return ProviderResult(
                content=f"{agent_name} handled {task_type}",
                model=provider.model_id,
                input_tokens=estimate_tokens(prompt),
                output_tokens=self.output_tokens,
                response_time_ms=5.0,
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def make_client() -> type[FakeProviderClient]:
    """The FakeProviderClient class, for tests that need failing agents, providers or hangs."""
    return FakeProviderClient


# ------------------------------------------------------------------ #
# Settings and routing stack
# ------------------------------------------------------------------ #

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test settings with all state under a temporary project root."""
    return Settings(
        environment=Environment.TEST,
        project_root=tmp_path,
        litellm_api_key="sk-test",
        step_timeout_seconds=5.0,
    )


@pytest.fixture
def catalog() -> ProviderCatalog:
    return ProviderCatalog()


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    return ResponseCache(max_entries=100, default_ttl_seconds=3600, clock=clock)


@pytest.fixture
def ledger(clock: FakeClock) -> UsageLedger:
    return UsageLedger(clock=clock)


@pytest.fixture
def budget(day_clock: FakeDayClock) -> BudgetController:
    return BudgetController(budgets={"DeveloperAgent": 5.0}, clock=day_clock)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def router(
    catalog: ProviderCatalog,
    fake_client: FakeProviderClient,
    cache: ResponseCache,
    ledger: UsageLedger,
    budget: BudgetController,
    events: EventBus,
) -> RequestRouter:
    return RequestRouter(
        catalog=catalog,
        client=fake_client,
        cache=cache,
        ledger=ledger,
        budget=budget,
        events=events,
        sleep=AsyncMock(),
    )


@pytest.fixture
def registry() -> AgentRegistry:
    registry = AgentRegistry()
    registry.register_all(DEFAULT_AGENTS)
    return registry


# ------------------------------------------------------------------ #
# Orchestration
# ------------------------------------------------------------------ #

@pytest.fixture
def planner() -> ExecutionPlanner:
    return ExecutionPlanner()


@pytest.fixture
def executor(router: RequestRouter, events: EventBus) -> PlanExecutor:
    return PlanExecutor(router, events, max_concurrent_steps=4, step_timeout_seconds=5.0)


@pytest.fixture
def orchestrator(
    registry: AgentRegistry,
    planner: ExecutionPlanner,
    executor: PlanExecutor,
    events: EventBus,
) -> AgentOrchestrator:
    return AgentOrchestrator(registry, planner, executor, events, id_factory=lambda: "orch_test")
