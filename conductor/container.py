"""Service wiring.

``build_container`` assembles the registry, routing stack and orchestrator
from Settings. The HTTP app and the CLI both go through it, and tests pass
a fake ProviderClient so no network call is ever made.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from conductor.agent.defaults import DEFAULT_AGENTS
from conductor.agent.registry import AgentRegistry
from conductor.config import Settings, get_settings
from conductor.events import EventBus
from conductor.model_router.budget import BudgetController
from conductor.model_router.cache import ResponseCache
from conductor.model_router.dispatch import LiteLLMProviderClient, ProviderClient
from conductor.model_router.fallback import FallbackChain
from conductor.model_router.ledger import UsageLedger
from conductor.model_router.providers import ProviderCatalog, default_catalog
from conductor.model_router.router import RequestRouter
from conductor.orchestration.executor import PlanExecutor
from conductor.orchestration.orchestrator import AgentOrchestrator
from conductor.orchestration.planner import ExecutionPlanner
from conductor.persistence.state_store import StateStore

log = structlog.get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    store: StateStore
    events: EventBus
    registry: AgentRegistry
    router: RequestRouter
    orchestrator: AgentOrchestrator

    async def startup(self) -> None:
        await self.router.load_state()

    async def shutdown(self) -> None:
        await self.router.save_state()
        self.events.close()


def build_registry(settings: Settings, store: StateStore) -> AgentRegistry:
    """Registry loaded from the project's agent directory, else the built-ins."""
    registry = AgentRegistry(
        threshold=settings.recommendation_threshold,
        max_confidence=settings.max_confidence,
        limit=settings.recommendation_limit,
    )
    loaded = registry.load_directory(store.agents_dir) if store.enabled else 0
    if loaded == 0:
        registry.register_all(DEFAULT_AGENTS)
        log.info("container.default_agents_registered", agents=len(registry))
    return registry


def build_container(
    settings: Settings | None = None,
    provider_client: ProviderClient | None = None,
    clock: Callable[[], float] | None = None,
) -> Container:
    settings = settings or get_settings()
    store = StateStore(settings.state_dir, enabled=settings.persist_state)
    events = EventBus()
    catalog = ProviderCatalog(default_catalog(settings))

    cache_kwargs = {"clock": clock} if clock is not None else {}
    cache = ResponseCache(
        max_entries=settings.cache_max_entries,
        default_ttl_seconds=settings.cache_default_ttl_seconds,
        store=store,
        **cache_kwargs,
    )
    ledger = UsageLedger(
        store=store,
        memory_limit=settings.ledger_memory_limit,
        memory_retain=settings.ledger_memory_retain,
        **cache_kwargs,
    )
    budget = BudgetController(
        budgets=settings.default_cost_budgets,
        speed_thresholds=settings.default_speed_thresholds,
        emergency_threshold=settings.emergency_threshold,
        emergency_ttl_multiplier=settings.emergency_cache_ttl_multiplier,
        store=store,
    )
    client = provider_client or LiteLLMProviderClient(
        api_base=settings.litellm_base_url or None,
        api_key=settings.litellm_api_key.get_secret_value(),
        max_output_tokens=settings.provider_max_output_tokens,
    )
    router = RequestRouter(
        catalog=catalog,
        client=client,
        cache=cache,
        ledger=ledger,
        budget=budget,
        events=events,
        default_cache_ttl_seconds=settings.cache_default_ttl_seconds,
        cache_ttl_rules=settings.cache_ttl_rules,
        timeout_safety_factor=settings.provider_timeout_safety_factor,
        single_request_alert_usd=settings.single_request_alert_usd,
        fallback=FallbackChain.for_strategy(catalog, settings.provider_fallback_strategy),
    )

    registry = build_registry(settings, store)
    orchestrator = AgentOrchestrator(
        registry=registry,
        planner=ExecutionPlanner(
            default_max_agents=settings.default_max_agents,
            max_agents_limit=settings.max_agents_limit,
        ),
        executor=PlanExecutor(
            router,
            events,
            max_concurrent_steps=settings.max_concurrent_steps,
            step_timeout_seconds=settings.step_timeout_seconds,
        ),
        events=events,
    )
    return Container(
        settings=settings,
        store=store,
        events=events,
        registry=registry,
        router=router,
        orchestrator=orchestrator,
    )
