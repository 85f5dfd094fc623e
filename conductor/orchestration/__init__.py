"""Multi-agent orchestration: planning, execution and reporting."""

from __future__ import annotations

from conductor.orchestration.errors import (
    NoSuitableAgentError,
    OrchestrationError,
    PlanValidationError,
)
from conductor.orchestration.executor import PlanExecutor
from conductor.orchestration.models import (
    ExecutionPlan,
    ExecutionStep,
    OrchestrationReport,
    OrchestrationRequest,
    StepResult,
    StepStatus,
)
from conductor.orchestration.orchestrator import AgentOrchestrator
from conductor.orchestration.planner import ExecutionPlanner

__all__ = [
    "AgentOrchestrator",
    "ExecutionPlan",
    "ExecutionPlanner",
    "ExecutionStep",
    "NoSuitableAgentError",
    "OrchestrationError",
    "OrchestrationReport",
    "OrchestrationRequest",
    "PlanExecutor",
    "PlanValidationError",
    "StepResult",
    "StepStatus",
]
