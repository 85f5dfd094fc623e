"""Orchestration data model: requests, plans, steps, results and reports.

Dependency semantics used by the executor (``resolve_dependencies``):
- A dependency names an *action*. It is satisfied once every step with
  that action has completed (successfully or partially).
- A dependency on an action that is not in the plan is satisfied
  trivially; it is reported as missing so callers can log it.
- A dependency on an action whose steps appear at or after the dependent
  step can never resolve and is a PlanValidationError.
- A step with ``parallel=False`` additionally waits for every step that
  precedes it in the plan. Parallel steps wait only on their declared
  dependencies, so parallel siblings may run concurrently.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from conductor.model_router.requests import Priority
from conductor.orchestration.errors import PlanValidationError


class StepStatus(StrEnum):
    COMPLETED = "completed"
    PARTIAL = "partial"


@dataclass
class OrchestrationRequest:
    """A task to orchestrate.

    Attributes:
        task_description: Natural-language task
        priority: Drives the testing and review phases
        max_agents: Primary plus collaborators; None uses the configured default
        requires_collaboration: False plans with the primary agent only
        context: Passed to recommendation (e.g. ``exclude_agents``)
    """

    task_description: str
    priority: Priority = Priority.MEDIUM
    max_agents: int | None = None
    requires_collaboration: bool = True
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.task_description or not self.task_description.strip():
            raise ValueError("task_description cannot be empty")
        self.priority = Priority(self.priority)
        if self.max_agents is not None and self.max_agents < 1:
            raise ValueError("max_agents must be at least 1")


@dataclass(frozen=True)
class ExecutionStep:
    """One unit of agent work in a plan.

    ``action`` names the phase and is what dependencies refer to;
    ``step_id`` is unique within the plan.
    """

    step_id: str
    agent_name: str
    action: str
    dependencies: tuple[str, ...] = ()
    estimated_duration_ms: int = 0
    parallel: bool = False
    task_type: str = "general"

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "agent_name": self.agent_name,
            "action": self.action,
            "dependencies": list(self.dependencies),
            "estimated_duration_ms": self.estimated_duration_ms,
            "parallel": self.parallel,
            "task_type": self.task_type,
        }


@dataclass(frozen=True)
class ExecutionPlan:
    primary_agent: str
    collaborating_agents: tuple[str, ...]
    steps: tuple[ExecutionStep, ...]
    confidence: float

    @property
    def estimated_total_duration_ms(self) -> int:
        """Plain sum of step estimates; parallel steps are not overlapped."""
        return sum(step.estimated_duration_ms for step in self.steps)

    @property
    def critical_path_duration_ms(self) -> int:
        """Longest dependency chain, honouring parallelism."""
        predecessors = resolve_dependencies(self).predecessors
        finish: list[int] = []
        for index, step in enumerate(self.steps):
            start = max((finish[j] for j in predecessors[index]), default=0)
            finish.append(start + step.estimated_duration_ms)
        return max(finish, default=0)

    @property
    def actions(self) -> list[str]:
        return [step.action for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_agent": self.primary_agent,
            "collaborating_agents": list(self.collaborating_agents),
            "steps": [step.to_dict() for step in self.steps],
            "estimated_total_duration_ms": self.estimated_total_duration_ms,
            "critical_path_duration_ms": self.critical_path_duration_ms,
            "confidence": self.confidence,
        }


@dataclass
class DependencyResolution:
    """Per-step predecessor indexes plus dependencies absent from the plan."""

    predecessors: list[list[int]]
    missing: dict[str, list[str]]


def resolve_dependencies(plan: ExecutionPlan) -> DependencyResolution:
    """Turn declared dependencies into predecessor step indexes.

    Raises:
        PlanValidationError: Duplicate step ids, or a dependency that names
            the step itself or only later steps
    """
    seen_ids: set[str] = set()
    by_action: dict[str, list[int]] = {}
    for index, step in enumerate(plan.steps):
        if step.step_id in seen_ids:
            raise PlanValidationError(f"duplicate step id: {step.step_id}")
        seen_ids.add(step.step_id)
        by_action.setdefault(step.action, []).append(index)

    predecessors: list[list[int]] = []
    missing: dict[str, list[str]] = {}
    for index, step in enumerate(plan.steps):
        preds: set[int] = set() if step.parallel else set(range(index))
        for dependency in step.dependencies:
            matches = by_action.get(dependency)
            if not matches:
                missing.setdefault(step.step_id, []).append(dependency)
                continue
            if any(m >= index for m in matches):
                raise PlanValidationError(
                    f"step {step.step_id!r} depends on {dependency!r}, which does not "
                    "complete before it"
                )
            preds.update(matches)
        predecessors.append(sorted(preds))
    return DependencyResolution(predecessors=predecessors, missing=missing)


@dataclass
class StepResult:
    """Outcome of one step. Failed steps are PARTIAL and carry ``error``."""

    step_id: str
    agent_name: str
    action: str
    status: StepStatus
    content: str | None = None
    provider: str | None = None
    model: str | None = None
    tokens_used: int = 0
    cost: float = 0.0
    cache_hit: bool = False
    duration_ms: float = 0.0
    error: str | None = None

    @property
    def partial(self) -> bool:
        return self.status == StepStatus.PARTIAL

    def preview(self, limit: int = 200) -> str:
        if self.error is not None:
            text = json.dumps({"error": self.error, "partial": True})
        else:
            text = self.content or ""
        return text[:limit]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_id": self.step_id,
            "agent_name": self.agent_name,
            "action": self.action,
            "status": self.status.value,
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "cache_hit": self.cache_hit,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error is not None:
            data["error"] = self.error
            data["partial"] = True
        return data


@dataclass
class OrchestrationReport:
    """Final, always-returned result of an orchestration."""

    orchestration_id: str
    request: OrchestrationRequest
    plan: ExecutionPlan
    results: list[StepResult]
    recommendations: list[str]
    next_steps: list[str]
    duration_ms: float

    @property
    def successful_steps(self) -> int:
        return sum(1 for r in self.results if not r.partial)

    @property
    def partial_steps(self) -> int:
        return sum(1 for r in self.results if r.partial)

    @property
    def total_cost(self) -> float:
        return sum(r.cost for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orchestration_id": self.orchestration_id,
            "orchestration_summary": {
                "primary_agent": self.plan.primary_agent,
                "collaborating_agents": list(self.plan.collaborating_agents),
                "total_steps": len(self.plan.steps),
                "successful_steps": self.successful_steps,
                "partial_steps": self.partial_steps,
                "estimated_duration_ms": self.plan.estimated_total_duration_ms,
                "critical_path_duration_ms": self.plan.critical_path_duration_ms,
                "actual_duration_ms": round(self.duration_ms, 2),
                "total_cost": round(self.total_cost, 6),
                "total_tokens": sum(r.tokens_used for r in self.results),
                "confidence": self.plan.confidence,
            },
            "task_description": self.request.task_description,
            "priority": self.request.priority.value,
            "plan": [step.to_dict() for step in self.plan.steps],
            "results": {r.step_id: r.to_dict() for r in self.results},
            "recommendations": list(self.recommendations),
            "next_steps": list(self.next_steps),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
