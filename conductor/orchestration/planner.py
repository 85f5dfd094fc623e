"""Execution planner - turns a task and ranked agents into an ExecutionPlan.

Step synthesis is keyword-gated. Phase rules run in a fixed order and each
may append steps:

1. Analysis        ``analyze`` | ``review``
2. Implementation  ``implement`` | ``create`` | ``build``
3. Testing         ``test`` or CRITICAL priority, needs a Tester/QA collaborator
4. Review          HIGH or CRITICAL priority, one step per Security /
                   Performance / TechLead collaborator

A task matching no phase produces an empty plan; the executor treats that
as a trivial success.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from conductor.agent.registry import AgentRecommendation
from conductor.model_router.requests import Priority
from conductor.orchestration.errors import NoSuitableAgentError
from conductor.orchestration.models import ExecutionPlan, ExecutionStep, OrchestrationRequest

log = structlog.get_logger(__name__)

ANALYZE_REQUIREMENTS = "analyze_requirements"
SPECIALIST_ANALYSIS = "specialist_analysis"
IMPLEMENT_SOLUTION = "implement_solution"
COMPREHENSIVE_TESTING = "comprehensive_testing"
EXPERT_REVIEW = "expert_review"

ANALYSIS_DURATION_MS = 30_000
SPECIALIST_DURATION_MS = 20_000
IMPLEMENTATION_DURATION_MS = 60_000
TESTING_DURATION_MS = 45_000
REVIEW_DURATION_MS = 30_000

# Router task type per action; drives provider suitability and cache TTLs.
ACTION_TASK_TYPES: dict[str, str] = {
    ANALYZE_REQUIREMENTS: "code_analysis",
    SPECIALIST_ANALYSIS: "code_analysis",
    IMPLEMENT_SOLUTION: "code_generation",
    COMPREHENSIVE_TESTING: "testing",
    EXPERT_REVIEW: "code_review",
}


@dataclass
class DraftStep:
    agent_name: str
    action: str
    dependencies: tuple[str, ...] = ()
    estimated_duration_ms: int = 0
    parallel: bool = False


@dataclass
class PlanningContext:
    """Mutable state shared by the phase rules while one plan is built."""

    request: OrchestrationRequest
    task_lower: str
    primary_agent: str
    collaborators: list[str]
    steps: list[DraftStep] = field(default_factory=list)

    def has_action(self, action: str) -> bool:
        return any(step.action == action for step in self.steps)

    def add(self, step: DraftStep) -> None:
        self.steps.append(step)


class PhaseRule(Protocol):
    name: str

    def apply(self, ctx: PlanningContext) -> None: ...


def _mentions(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


class AnalysisPhase:
    name = "analysis"
    keywords: tuple[str, ...] = ("analyze", "review")

    def apply(self, ctx: PlanningContext) -> None:
        if not _mentions(ctx.task_lower, self.keywords):
            return
        ctx.add(
            DraftStep(
                agent_name=ctx.primary_agent,
                action=ANALYZE_REQUIREMENTS,
                estimated_duration_ms=ANALYSIS_DURATION_MS,
            )
        )
        for collaborator in ctx.collaborators:
            ctx.add(
                DraftStep(
                    agent_name=collaborator,
                    action=SPECIALIST_ANALYSIS,
                    dependencies=(ANALYZE_REQUIREMENTS,),
                    estimated_duration_ms=SPECIALIST_DURATION_MS,
                    parallel=True,
                )
            )


class ImplementationPhase:
    name = "implementation"
    keywords: tuple[str, ...] = ("implement", "create", "build")

    def apply(self, ctx: PlanningContext) -> None:
        if not _mentions(ctx.task_lower, self.keywords):
            return
        deps = (ANALYZE_REQUIREMENTS,) if ctx.has_action(ANALYZE_REQUIREMENTS) else ()
        ctx.add(
            DraftStep(
                agent_name=ctx.primary_agent,
                action=IMPLEMENT_SOLUTION,
                dependencies=deps,
                estimated_duration_ms=IMPLEMENTATION_DURATION_MS,
            )
        )


class TestingPhase:
    name = "testing"
    keywords: tuple[str, ...] = ("test",)
    agent_markers: tuple[str, ...] = ("Tester", "QA")

    def apply(self, ctx: PlanningContext) -> None:
        wanted = (
            _mentions(ctx.task_lower, self.keywords)
            or ctx.request.priority == Priority.CRITICAL
        )
        if not wanted:
            return
        tester = next(
            (c for c in ctx.collaborators if _mentions(c, self.agent_markers)),
            None,
        )
        if tester is None:
            log.debug("planner.testing_skipped", reason="no tester collaborator")
            return
        ctx.add(
            DraftStep(
                agent_name=tester,
                action=COMPREHENSIVE_TESTING,
                dependencies=(IMPLEMENT_SOLUTION,),
                estimated_duration_ms=TESTING_DURATION_MS,
            )
        )


class ReviewPhase:
    name = "review"
    priorities: tuple[Priority, ...] = (Priority.HIGH, Priority.CRITICAL)
    agent_markers: tuple[str, ...] = ("Security", "Performance", "TechLead")

    def apply(self, ctx: PlanningContext) -> None:
        if ctx.request.priority not in self.priorities:
            return
        # Every reviewer hangs off the same step so reviews run side by side.
        anchor = (ctx.steps[-1].action,) if ctx.steps else ()
        for collaborator in ctx.collaborators:
            if not _mentions(collaborator, self.agent_markers):
                continue
            ctx.add(
                DraftStep(
                    agent_name=collaborator,
                    action=EXPERT_REVIEW,
                    dependencies=anchor,
                    estimated_duration_ms=REVIEW_DURATION_MS,
                    parallel=True,
                )
            )


DEFAULT_PHASES: tuple[PhaseRule, ...] = (
    AnalysisPhase(),
    ImplementationPhase(),
    TestingPhase(),
    ReviewPhase(),
)


def assign_step_ids(drafts: Sequence[DraftStep]) -> list[ExecutionStep]:
    """Freeze drafts into steps with unique ids.

    A step whose action occurs once keeps the action as its id; repeated
    actions are qualified with the agent name (``expert_review:SecurityAgent``).
    """
    counts: dict[str, int] = {}
    for draft in drafts:
        counts[draft.action] = counts.get(draft.action, 0) + 1

    steps: list[ExecutionStep] = []
    used: set[str] = set()
    for draft in drafts:
        step_id = draft.action
        if counts[draft.action] > 1:
            step_id = f"{draft.action}:{draft.agent_name}"
        base, suffix = step_id, 2
        while step_id in used:
            step_id = f"{base}#{suffix}"
            suffix += 1
        used.add(step_id)
        steps.append(
            ExecutionStep(
                step_id=step_id,
                agent_name=draft.agent_name,
                action=draft.action,
                dependencies=draft.dependencies,
                estimated_duration_ms=draft.estimated_duration_ms,
                parallel=draft.parallel,
                task_type=ACTION_TASK_TYPES.get(draft.action, "general"),
            )
        )
    return steps


class ExecutionPlanner:
    """Builds ExecutionPlans from ranked recommendations.

    Args:
        default_max_agents: Primary plus collaborators when the request is silent
        max_agents_limit: Hard ceiling on ``max_agents``
        phases: Phase rules, applied in order
    """

    def __init__(
        self,
        default_max_agents: int = 3,
        max_agents_limit: int = 5,
        phases: Sequence[PhaseRule] = DEFAULT_PHASES,
    ) -> None:
        if default_max_agents < 1 or max_agents_limit < 1:
            raise ValueError("agent limits must be at least 1")
        self._default_max_agents = default_max_agents
        self._max_agents_limit = max_agents_limit
        self._phases = tuple(phases)

    def plan(
        self,
        request: OrchestrationRequest,
        recommendations: Sequence[AgentRecommendation],
    ) -> ExecutionPlan:
        """Build the plan for ``request``.

        Raises:
            NoSuitableAgentError: If ``recommendations`` is empty
        """
        if not recommendations:
            raise NoSuitableAgentError(request.task_description)

        max_agents = min(request.max_agents or self._default_max_agents, self._max_agents_limit)
        primary = recommendations[0]
        collaborators: list[str] = []
        if request.requires_collaboration:
            collaborators = [r.agent_name for r in recommendations[1:max_agents]]

        ctx = PlanningContext(
            request=request,
            task_lower=request.task_description.lower(),
            primary_agent=primary.agent_name,
            collaborators=collaborators,
        )
        for phase in self._phases:
            phase.apply(ctx)

        plan = ExecutionPlan(
            primary_agent=primary.agent_name,
            collaborating_agents=tuple(collaborators),
            steps=tuple(assign_step_ids(ctx.steps)),
            confidence=primary.confidence,
        )
        log.info(
            "planner.plan_created",
            primary_agent=plan.primary_agent,
            collaborators=collaborators,
            steps=[s.step_id for s in plan.steps],
            estimated_duration_ms=plan.estimated_total_duration_ms,
        )
        return plan
