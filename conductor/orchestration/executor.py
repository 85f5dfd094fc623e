"""Plan executor - runs an ExecutionPlan through the request router.

Each step is an asyncio task that waits on the completion events of its
predecessors (see ``resolve_dependencies``), then calls the router under a
semaphore and a per-step timeout. Parallel siblings therefore run
concurrently while everything else keeps plan order, and nothing polls.

No step failure aborts the plan: provider errors, timeouts and a cancelled
provider call are recorded as PARTIAL results carrying ``error``, and the
step still counts as completed for its dependants.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import structlog

from conductor.events import EventBus, EventTopic, StepCompleted
from conductor.model_router.requests import Priority, RouteRequest
from conductor.model_router.router import RequestRouter
from conductor.orchestration.models import (
    ExecutionPlan,
    ExecutionStep,
    OrchestrationReport,
    OrchestrationRequest,
    StepResult,
    StepStatus,
    resolve_dependencies,
)

log = structlog.get_logger(__name__)

PREVIEW_CHARS = 200
FAILURE_RATE_ALERT = 0.3


def build_step_message(
    step: ExecutionStep,
    task_description: str,
    previous: Sequence[StepResult],
) -> str:
    """Prompt sent to the step's agent."""
    message = f"Execute {step.action} for the following task:\n\n{task_description}\n\n"
    if previous:
        message += "Previous step results:\n"
        for result in previous:
            message += f"- {result.action}: {result.preview(PREVIEW_CHARS)}...\n"
    # The agent line keeps sibling steps with the same action on distinct cache keys
    message += (
        f"\nStep context: {step.action}\nAgent: {step.agent_name}\n"
        f"Estimated time: {step.estimated_duration_ms}ms\n"
    )
    return message


def advisory_recommendations(plan: ExecutionPlan, results: Sequence[StepResult]) -> list[str]:
    recommendations: list[str] = []
    if not plan.steps:
        recommendations.append(
            "No execution steps matched the task description - refine the wording "
            "(analyze, implement, test) to get a fuller plan"
        )
    if any(r.error is not None for r in results):
        recommendations.append("Review and address any errors found during execution")
    if any(r.partial for r in results):
        recommendations.append(
            "Some steps completed with partial results - consider re-running for complete analysis"
        )
    if results:
        failure_rate = sum(1 for r in results if r.partial) / len(results)
        if failure_rate > FAILURE_RATE_ALERT:
            recommendations.append(
                "Failure rate above 30% - increase validation before relying on these results"
            )
    recommendations.append("Monitor performance metrics and adjust agent selection based on results")
    return recommendations


def advisory_next_steps(request: OrchestrationRequest) -> list[str]:
    next_steps: list[str] = []
    if request.priority == Priority.CRITICAL:
        next_steps.append("Set up continuous monitoring for critical components")
    next_steps.append("Update documentation with orchestration results")
    next_steps.append("Schedule follow-up review in 1 week")
    return next_steps


class PlanExecutor:
    """Executes plans step by step, tolerating partial failures.

    Args:
        router: Request router every step goes through
        events: Receives a STEP_COMPLETED event after every step
        max_concurrent_steps: Steps allowed in flight at once
        step_timeout_seconds: Upper bound on a single step's router call
    """

    def __init__(
        self,
        router: RequestRouter,
        events: EventBus,
        max_concurrent_steps: int = 4,
        step_timeout_seconds: float = 120.0,
    ) -> None:
        if max_concurrent_steps < 1:
            raise ValueError("max_concurrent_steps must be at least 1")
        self._router = router
        self._events = events
        self._max_concurrent = max_concurrent_steps
        self._step_timeout = step_timeout_seconds

    async def execute(
        self,
        plan: ExecutionPlan,
        request: OrchestrationRequest,
        orchestration_id: str,
    ) -> OrchestrationReport:
        """Run every step of ``plan`` and compile the report.

        Raises:
            PlanValidationError: The plan has duplicate step ids or
                dependencies that can never be satisfied
        """
        started = time.monotonic()
        resolution = resolve_dependencies(plan)
        for step_id, missing in resolution.missing.items():
            log.warning("executor.dependency_not_in_plan", step_id=step_id, missing=missing)

        steps = plan.steps
        predecessors = resolution.predecessors
        done = [asyncio.Event() for _ in steps]
        results: list[StepResult | None] = [None] * len(steps)
        semaphore = asyncio.Semaphore(self._max_concurrent)

        ancestors: list[set[int]] = []
        for index in range(len(steps)):
            found: set[int] = set()
            for pred in predecessors[index]:
                found.add(pred)
                found |= ancestors[pred]
            ancestors.append(found)

        async def run(index: int) -> None:
            for pred in predecessors[index]:
                await done[pred].wait()
            previous = [results[j] for j in sorted(ancestors[index]) if results[j] is not None]
            step = steps[index]
            try:
                async with semaphore:
                    result = await self._run_step(step, request, orchestration_id, previous)
                results[index] = result
            finally:
                done[index].set()
            await self._events.publish(
                EventTopic.STEP_COMPLETED,
                StepCompleted(orchestration_id=orchestration_id, step=step, result=result),
            )

        log.info("executor.plan_started", steps=len(steps), concurrency=self._max_concurrent)
        await asyncio.gather(*(run(i) for i in range(len(steps))))

        completed = [r for r in results if r is not None]
        report = OrchestrationReport(
            orchestration_id=orchestration_id,
            request=request,
            plan=plan,
            results=completed,
            recommendations=advisory_recommendations(plan, completed),
            next_steps=advisory_next_steps(request),
            duration_ms=(time.monotonic() - started) * 1000,
        )
        log.info(
            "executor.plan_completed",
            successful_steps=report.successful_steps,
            partial_steps=report.partial_steps,
            duration_ms=round(report.duration_ms, 2),
        )
        return report

    async def _run_step(
        self,
        step: ExecutionStep,
        request: OrchestrationRequest,
        orchestration_id: str,
        previous: Sequence[StepResult],
    ) -> StepResult:
        log.info("executor.step_started", step_id=step.step_id, agent_name=step.agent_name)
        started = time.monotonic()
        route_request = RouteRequest(
            prompt=build_step_message(step, request.task_description, previous),
            agent_name=step.agent_name,
            task_type=step.task_type,
            priority=request.priority,
        )
        task_id = f"{orchestration_id}:{step.step_id}"

        try:
            response = await asyncio.wait_for(
                self._router.send_message(task_id, route_request),
                timeout=self._step_timeout,
            )
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return self._partial(step, started, "provider call was cancelled")
        except TimeoutError:
            return self._partial(step, started, f"step timed out after {self._step_timeout}s")
        except Exception as exc:
            return self._partial(step, started, str(exc) or type(exc).__name__)

        duration_ms = (time.monotonic() - started) * 1000
        if not response.ok:
            return self._partial(
                step,
                started,
                response.error or response.content or response.status.value,
                provider=response.provider,
            )

        log.info(
            "executor.step_completed",
            step_id=step.step_id,
            provider=response.provider,
            cache_hit=response.cache_hit,
        )
        return StepResult(
            step_id=step.step_id,
            agent_name=step.agent_name,
            action=step.action,
            status=StepStatus.COMPLETED,
            content=response.content,
            provider=response.provider,
            model=response.model,
            tokens_used=response.tokens_used,
            cost=response.cost,
            cache_hit=response.cache_hit,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _partial(
        step: ExecutionStep,
        started: float,
        error: str,
        provider: str | None = None,
    ) -> StepResult:
        log.warning("executor.step_partial", step_id=step.step_id, error=error)
        return StepResult(
            step_id=step.step_id,
            agent_name=step.agent_name,
            action=step.action,
            status=StepStatus.PARTIAL,
            provider=provider,
            duration_ms=(time.monotonic() - started) * 1000,
            error=error,
        )
