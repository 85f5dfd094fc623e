"""Request router - turns a logical request into a priced, possibly cached response.

Routing order for one request:
1. Look the raw prompt up in the response cache. A live hit returns
   immediately with zero cost and zero tokens.
2. Optimise the prompt (publishes a COST_SAVINGS event), then look the
   optimised prompt up as well; responses are stored under that key.
3. Choose the provider. If the agent or task type is in emergency mode the
   zero-cost provider is forced; otherwise the selector picks one, honouring
   any speed threshold.
4. If the request carries a cost limit and the estimated cost exceeds it,
   return a COST_LIMITED response without calling anything.
5. Dispatch under a timeout. If the provider fails, walk the fallback chain
   (only zero-cost providers while in emergency mode, only providers within
   the cost limit). Cache the answer, append a usage record and charge the
   spend to the agent's and task type's budgets against the provider that
   actually answered.

Exactly one cache hit or miss is counted per routed request.

Failures in step 5 propagate to the caller once the whole chain has failed.
Batches convert them into FAILED responses so one bad request never sinks
the batch.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from conductor.events import CostSavings, EventBus, EventTopic
from conductor.model_router.budget import BudgetController
from conductor.model_router.cache import ResponseCache, hash_prompt
from conductor.model_router.dispatch import ProviderClient, provider_timeout
from conductor.model_router.fallback import FallbackChain
from conductor.model_router.ledger import UsageLedger, UsageRecord
from conductor.model_router.optimizer import REFERENCE_COST_PER_TOKEN, PromptOptimizer
from conductor.model_router.providers import ProviderCatalog, ProviderProfile, estimate_tokens
from conductor.model_router.requests import (
    COST_LIMIT_MESSAGE,
    PRIORITY_ORDER,
    RouteRequest,
    RouteResponse,
    RouteStatus,
)
from conductor.model_router.selector import ProviderSelector

log = structlog.get_logger(__name__)


class RequestRouter:
    """Single entry point for every provider call.

    Args:
        catalog: Provider profiles
        client: Boundary that performs the actual provider call
        cache: Response cache
        ledger: Usage ledger
        budget: Budget controller
        events: Bus that receives COST_SAVINGS events
        optimizer: Prompt optimiser (default pipeline if None)
        default_cache_ttl_seconds: TTL when neither request nor rules set one
        cache_ttl_rules: Per-task-type TTLs in seconds
        timeout_safety_factor: Call timeout = avg latency x this factor
        single_request_alert_usd: Warn when one call costs more than this
        fallback: Provider fallback chain (reliability-optimised if None)
        sleep: Awaitable sleep used between batches (injectable for tests)
    """

    def __init__(
        self,
        *,
        catalog: ProviderCatalog,
        client: ProviderClient,
        cache: ResponseCache,
        ledger: UsageLedger,
        budget: BudgetController,
        events: EventBus,
        optimizer: PromptOptimizer | None = None,
        default_cache_ttl_seconds: float = 3600,
        cache_ttl_rules: dict[str, int] | None = None,
        timeout_safety_factor: float = 10.0,
        single_request_alert_usd: float = 1.0,
        fallback: FallbackChain | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._catalog = catalog
        self._selector = ProviderSelector(catalog)
        self._client = client
        self._cache = cache
        self._ledger = ledger
        self._budget = budget
        self._events = events
        self._optimizer = optimizer or PromptOptimizer()
        self._default_ttl = default_cache_ttl_seconds
        self._ttl_rules = dict(cache_ttl_rules or {})
        self._safety_factor = timeout_safety_factor
        self._alert_usd = single_request_alert_usd
        self._fallback = fallback or FallbackChain.for_strategy(catalog)
        self._sleep = sleep

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def ledger(self) -> UsageLedger:
        return self._ledger

    @property
    def budget(self) -> BudgetController:
        return self._budget

    @property
    def catalog(self) -> ProviderCatalog:
        return self._catalog

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    async def send_message(self, task_id: str, request: RouteRequest) -> RouteResponse:
        """Route ``request`` on behalf of ``task_id``.

        Raises:
            ProviderError: The provider call failed or timed out
        """
        try:
            response = await self.route(request)
        except Exception as exc:
            log.error(
                "router.request_failed",
                task_id=task_id,
                agent_name=request.agent_name,
                error=str(exc),
            )
            raise
        log.info(
            "router.request_done",
            task_id=task_id,
            agent_name=request.agent_name,
            provider=response.provider,
            status=response.status.value,
            cost=round(response.cost, 6),
        )
        return response

    async def route(self, request: RouteRequest) -> RouteResponse:
        return await self._route(request)

    async def _route(
        self,
        request: RouteRequest,
        preselected: ProviderProfile | None = None,
    ) -> RouteResponse:
        started = time.monotonic()
        original_tokens = estimate_tokens(request.prompt)

        raw_hash = hash_prompt(request.prompt)
        # The optimised lookup below records the miss
        cached = await self._cache.get(raw_hash, count_miss=False)
        if cached is not None:
            return self._cached_response(request, cached, started, original_tokens)

        optimized = self._optimizer.optimize(request.prompt, request.task_type, request.agent_name)
        await self._events.publish(
            EventTopic.COST_SAVINGS,
            CostSavings(
                agent_name=request.agent_name,
                task_type=request.task_type,
                result=optimized.result,
            ),
        )

        prompt_hash = hash_prompt(optimized.text)
        cached = await self._cache.get(prompt_hash)
        if cached is not None:
            return self._cached_response(request, cached, started, original_tokens)

        optimized_tokens = optimized.result.optimized_tokens
        provider = self._choose_provider(request, len(optimized.text), preselected)
        estimated_cost = provider.estimate_cost(optimized_tokens)

        if request.cost_limit is not None and estimated_cost > request.cost_limit:
            log.warning(
                "router.cost_limit_exceeded",
                agent_name=request.agent_name,
                provider=provider.name,
                estimated_cost=round(estimated_cost, 6),
                cost_limit=request.cost_limit,
            )
            return RouteResponse(
                content=COST_LIMIT_MESSAGE,
                provider=provider.name,
                model="cost_limited",
                tokens_used=0,
                cost=0.0,
                cache_hit=False,
                response_time_ms=0.0,
                status=RouteStatus.COST_LIMITED,
                original_token_estimate=original_tokens,
                optimized_token_estimate=optimized_tokens,
                cost_savings=original_tokens * REFERENCE_COST_PER_TOKEN,
            )

        candidates = self._fallback.candidates(
            provider,
            zero_cost_only=self._budget.is_downgraded(request.agent_name, request.task_type),
            prompt_tokens=optimized_tokens,
            cost_limit=request.cost_limit,
        )
        result, provider = await self._fallback.execute(
            lambda candidate: self._client.complete(
                candidate,
                optimized.text,
                agent_name=request.agent_name,
                task_type=request.task_type,
                timeout_seconds=provider_timeout(candidate, self._safety_factor),
            ),
            candidates,
        )
        cost = provider.actual_cost(result.input_tokens, result.output_tokens)

        ttl = self._cache_ttl(request) * self._budget.cache_ttl_multiplier(
            request.agent_name, request.task_type
        )
        await self._cache.set(
            prompt_hash,
            {"content": result.content, "provider": provider.name, "model": result.model},
            ttl_seconds=ttl,
        )
        await self._ledger.append(
            UsageRecord(
                provider=provider.name,
                model=result.model,
                tokens_used=result.tokens_used,
                cost=cost,
                response_time_ms=result.response_time_ms,
                task_type=request.task_type,
                agent_name=request.agent_name,
                prompt_hash=prompt_hash,
            )
        )
        self._budget.record_spend(request.agent_name, cost)
        if request.task_type != request.agent_name:
            self._budget.record_spend(request.task_type, cost)

        if cost > self._alert_usd:
            log.warning(
                "router.expensive_request",
                agent_name=request.agent_name,
                provider=provider.name,
                cost=round(cost, 4),
                alert_threshold=self._alert_usd,
            )

        return RouteResponse(
            content=result.content,
            provider=provider.name,
            model=result.model,
            tokens_used=result.tokens_used,
            cost=cost,
            cache_hit=False,
            response_time_ms=(time.monotonic() - started) * 1000,
            status=RouteStatus.OK,
            original_token_estimate=original_tokens,
            optimized_token_estimate=optimized_tokens,
            cost_savings=max(original_tokens - optimized_tokens, 0) * provider.cost_per_input_token,
        )

    def _choose_provider(
        self,
        request: RouteRequest,
        prompt_length: int,
        preselected: ProviderProfile | None = None,
    ) -> ProviderProfile:
        if self._budget.is_downgraded(request.agent_name, request.task_type):
            provider = self._catalog.zero_cost_provider()
            log.info(
                "router.emergency_downgrade",
                agent_name=request.agent_name,
                task_type=request.task_type,
                provider=provider.name,
            )
            return provider
        if preselected is not None:
            return preselected
        max_ms = request.max_response_time_ms or self._budget.speed_threshold(
            request.task_type, request.agent_name
        )
        selection = self._selector.select(
            request.task_type,
            prompt_length,
            request.speed_priority,
            max_response_time_ms=max_ms,
        )
        return selection.provider

    def _cache_ttl(self, request: RouteRequest) -> float:
        if request.cache_ttl_seconds is not None:
            return request.cache_ttl_seconds
        return float(self._ttl_rules.get(request.task_type, self._default_ttl))

    def _cached_response(
        self,
        request: RouteRequest,
        cached: dict[str, Any],
        started: float,
        original_tokens: int,
    ) -> RouteResponse:
        log.info("router.cache_hit", agent_name=request.agent_name, task_type=request.task_type)
        return RouteResponse(
            content=str(cached.get("content", "")),
            provider=str(cached.get("provider", "cache")),
            model=str(cached.get("model", "cached")),
            tokens_used=0,
            cost=0.0,
            cache_hit=True,
            response_time_ms=(time.monotonic() - started) * 1000,
            status=RouteStatus.CACHED,
            original_token_estimate=original_tokens,
            optimized_token_estimate=0,
            cost_savings=original_tokens * REFERENCE_COST_PER_TOKEN,
        )

    # ------------------------------------------------------------------ #
    # Batching
    # ------------------------------------------------------------------ #

    async def batch_optimized_requests(self, requests: list[RouteRequest]) -> list[RouteResponse]:
        """Route many requests, grouped per provider and rate-limited.

        Requests are grouped by selected provider, ordered by priority
        within the group and sent in sub-batches of the provider's batch
        size, pausing the provider's batch delay between sub-batches.

        Returns:
            One response per request, in input order. A request that raised
            is reported as a FAILED response.
        """
        log.info("router.batch_started", size=len(requests))
        groups: dict[str, list[tuple[int, RouteRequest]]] = {}
        for index, request in enumerate(requests):
            provider = self._choose_provider(request, len(request.prompt))
            groups.setdefault(provider.name, []).append((index, request))

        responses: list[RouteResponse | None] = [None] * len(requests)
        for provider_name, items in groups.items():
            profile = self._catalog.get(provider_name)
            items.sort(key=lambda item: PRIORITY_ORDER[item[1].priority])
            size = profile.batch_size
            for start in range(0, len(items), size):
                batch = items[start : start + size]
                outcomes = await asyncio.gather(
                    *(self._route(request, preselected=profile) for _, request in batch),
                    return_exceptions=True,
                )
                for (index, request), outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        responses[index] = self._failed_response(request, profile, outcome)
                    else:
                        responses[index] = outcome
                if start + size < len(items) and profile.batch_delay_seconds > 0:
                    await self._sleep(profile.batch_delay_seconds)

        log.info(
            "router.batch_done",
            size=len(requests),
            providers=list(groups),
            failed=sum(1 for r in responses if r is not None and r.status == RouteStatus.FAILED),
        )
        return [r for r in responses if r is not None]

    @staticmethod
    def _failed_response(
        request: RouteRequest,
        provider: ProviderProfile,
        error: BaseException,
    ) -> RouteResponse:
        log.warning(
            "router.batch_item_failed",
            agent_name=request.agent_name,
            provider=provider.name,
            error=str(error) or type(error).__name__,
        )
        return RouteResponse(
            content="",
            provider=provider.name,
            model=provider.model_id,
            tokens_used=0,
            cost=0.0,
            cache_hit=False,
            response_time_ms=0.0,
            status=RouteStatus.FAILED,
            original_token_estimate=estimate_tokens(request.prompt),
            error=str(error) or type(error).__name__,
        )

    # ------------------------------------------------------------------ #
    # Administration / analytics
    # ------------------------------------------------------------------ #

    async def set_cost_budget(self, identifier: str, daily_budget: float) -> None:
        self._budget.set_budget(identifier, daily_budget)
        await self._budget.save()

    async def set_speed_threshold(self, identifier: str, max_response_time_ms: int) -> None:
        self._budget.set_speed_threshold(identifier, max_response_time_ms)
        await self._budget.save()

    async def emergency_cost_control(
        self,
        current_spend: float,
        daily_budget: float,
        agents_in_scope: list[str] | None = None,
    ) -> bool:
        """Downgrade ``agents_in_scope`` (default: every budgeted identifier)."""
        scope = agents_in_scope
        if scope is None:
            scope = [s.identifier for s in self._budget.states() if s.daily_budget]
        downgraded = self._budget.check_and_maybe_downgrade(current_spend, daily_budget, scope)
        if downgraded:
            await self._budget.save()
        return downgraded

    def get_real_time_metrics(self) -> dict[str, Any]:
        metrics = self._ledger.real_time_metrics()
        metrics["cache"] = self._cache.stats()
        metrics["emergency_mode"] = self._budget.emergency_identifiers()
        metrics["budgets"] = [s.to_dict() for s in self._budget.states() if s.daily_budget]
        return metrics

    async def load_state(self) -> None:
        await self._cache.load()
        await self._ledger.load()
        await self._budget.load()

    async def save_state(self) -> None:
        await self._cache.save()
        await self._budget.save()
