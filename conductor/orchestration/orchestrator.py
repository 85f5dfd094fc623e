"""Agent orchestrator - recommendation, planning and execution for one task.

    request ──► registry.recommend ──► planner.plan ──► ORCHESTRATION_STARTED
                                                            │
                                 report ◄── executor.execute┘

Raises NoSuitableAgentError when no agent clears the recommendation
threshold. Otherwise a report is always returned, however many steps fail.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from conductor.agent.registry import AgentRecommendation, AgentRegistry
from conductor.events import EventBus, EventTopic, OrchestrationStarted
from conductor.orchestration.errors import NoSuitableAgentError
from conductor.orchestration.executor import PlanExecutor
from conductor.orchestration.models import ExecutionPlan, OrchestrationReport, OrchestrationRequest
from conductor.orchestration.planner import ExecutionPlanner
from conductor.telemetry.logging import bind_orchestration_context, unbind_orchestration_context

log = structlog.get_logger(__name__)


def new_orchestration_id() -> str:
    return f"orch_{uuid.uuid4().hex[:12]}"


class AgentOrchestrator:
    def __init__(
        self,
        registry: AgentRegistry,
        planner: ExecutionPlanner,
        executor: PlanExecutor,
        events: EventBus,
        id_factory: Callable[[], str] = new_orchestration_id,
    ) -> None:
        self._registry = registry
        self._planner = planner
        self._executor = executor
        self._events = events
        self._id_factory = id_factory
        self._active: dict[str, ExecutionPlan] = {}

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    def active_orchestrations(self) -> dict[str, ExecutionPlan]:
        return dict(self._active)

    def recommend_agent_for_task(
        self,
        task_description: str,
        context: Mapping[str, Any] | None = None,
    ) -> list[AgentRecommendation]:
        return self._registry.recommend(task_description, context)

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationReport:
        """Plan and execute ``request``.

        Raises:
            NoSuitableAgentError: No agent scored above the threshold
        """
        recommendations = self._registry.recommend(request.task_description, request.context)
        if not recommendations:
            log.warning("orchestrator.no_suitable_agent", task=request.task_description[:100])
            raise NoSuitableAgentError(request.task_description)

        plan = self._planner.plan(request, recommendations)
        orchestration_id = self._id_factory()
        self._active[orchestration_id] = plan
        bind_orchestration_context(orchestration_id, plan.primary_agent)
        try:
            log.info(
                "orchestrator.started",
                priority=request.priority.value,
                collaborators=list(plan.collaborating_agents),
                steps=len(plan.steps),
            )
            await self._events.publish(
                EventTopic.ORCHESTRATION_STARTED,
                OrchestrationStarted(orchestration_id=orchestration_id, plan=plan),
            )
            report = await self._executor.execute(plan, request, orchestration_id)
            log.info(
                "orchestrator.completed",
                successful_steps=report.successful_steps,
                partial_steps=report.partial_steps,
            )
            return report
        finally:
            self._active.pop(orchestration_id, None)
            unbind_orchestration_context()

    async def orchestrate_task(self, request: OrchestrationRequest) -> str:
        """Same as ``orchestrate`` but returns the report as a JSON string."""
        report = await self.orchestrate(request)
        return report.to_json()
