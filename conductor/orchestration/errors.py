"""Orchestration exceptions."""

from __future__ import annotations


class OrchestrationError(Exception):
    """Base exception for orchestration failures."""


class NoSuitableAgentError(OrchestrationError):
    """No registered agent scored above the recommendation threshold."""

    def __init__(self, task_description: str) -> None:
        super().__init__(f"No suitable agents found for the task: {task_description!r}")
        self.task_description = task_description


class PlanValidationError(OrchestrationError, ValueError):
    """An execution plan has duplicate step ids or dependencies that can never resolve."""
