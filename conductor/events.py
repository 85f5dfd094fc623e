"""EventBus - typed in-process publish/subscribe.

Topics:
    ORCHESTRATION_STARTED -> OrchestrationStarted(orchestration_id, plan)
    STEP_COMPLETED        -> StepCompleted(orchestration_id, step, result)
    COST_SAVINGS          -> CostSavings(agent_name, task_type, result)

Subscribers get a Subscription handle. Disposing it (directly, or by
leaving its ``with`` block) removes the handler immediately, so a
long-lived bus never keeps references to dead listeners. ``EventBus.close()``
disposes every remaining subscription.

Publishing is fire-and-forget from the publisher's perspective: handler
exceptions are logged and never propagate back. Handlers may be plain
functions or coroutine functions; coroutine handlers are awaited in
subscription order.

Usage:
    bus = EventBus()
    with bus.subscribe(EventTopic.STEP_COMPLETED, on_step):
        await orchestrator.orchestrate(request)
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from conductor.model_router.optimizer import CostOptimizationResult
    from conductor.orchestration.models import ExecutionPlan, ExecutionStep, StepResult

log = structlog.get_logger(__name__)


class EventTopic(StrEnum):
    ORCHESTRATION_STARTED = "orchestration_started"
    STEP_COMPLETED = "step_completed"
    COST_SAVINGS = "cost_savings"


@dataclass(frozen=True)
class OrchestrationStarted:
    orchestration_id: str
    plan: ExecutionPlan


@dataclass(frozen=True)
class StepCompleted:
    orchestration_id: str
    step: ExecutionStep
    result: StepResult


@dataclass(frozen=True)
class CostSavings:
    agent_name: str
    task_type: str
    result: CostOptimizationResult


Handler = Callable[[Any], Awaitable[None] | None]


class Subscription:
    """Handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: EventBus, topic: EventTopic, handler: Handler) -> None:
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._active:
            self._active = False
            self._bus._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class EventBus:
    def __init__(self) -> None:
        self._subscriptions: dict[EventTopic, list[Subscription]] = {t: [] for t in EventTopic}

    def subscribe(self, topic: EventTopic, handler: Handler) -> Subscription:
        subscription = Subscription(self, EventTopic(topic), handler)
        self._subscriptions[subscription.topic].append(subscription)
        log.debug("events.subscribed", topic=subscription.topic.value)
        return subscription

    def subscriber_count(self, topic: EventTopic) -> int:
        return len(self._subscriptions[EventTopic(topic)])

    async def publish(self, topic: EventTopic, payload: Any) -> int:
        """Deliver ``payload`` to every current subscriber of ``topic``.

        Returns:
            Number of handlers that ran without raising
        """
        delivered = 0
        # Copy so a handler disposing its own subscription is safe
        for subscription in list(self._subscriptions[EventTopic(topic)]):
            if not subscription.active:
                continue
            try:
                outcome = subscription.handler(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                log.warning(
                    "events.handler_failed",
                    topic=str(topic),
                    handler=getattr(subscription.handler, "__qualname__", repr(subscription.handler)),
                    error=str(exc),
                )
                continue
            delivered += 1
        return delivered

    def close(self) -> None:
        """Dispose every subscription on every topic."""
        for subscriptions in self._subscriptions.values():
            for subscription in list(subscriptions):
                subscription.dispose()

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions[subscription.topic].remove(subscription)
        except ValueError:
            pass
