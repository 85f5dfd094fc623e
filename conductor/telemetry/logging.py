"""Structured logging configuration.

Configures structlog with JSON output in production and a rich console
renderer in development. Orchestration runs bind ``orchestration_id`` into
the contextvars so every routing and registry event emitted while a plan
executes carries it.

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "conductor.model_router.router",
        "event": "router.dispatched",
        "orchestration_id": "orch_1f3c...",
        "provider": "claude",
        "cost": 0.0021
    }
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_orchestration_context(orchestration_id: str, primary_agent: str | None = None) -> None:
    """Bind orchestration identifiers to log context for this run.

    Args:
        orchestration_id: Identifier of the running orchestration
        primary_agent: Agent leading the plan, if already known
    """
    values = {"orchestration_id": orchestration_id}
    if primary_agent:
        values["primary_agent"] = primary_agent
    structlog.contextvars.bind_contextvars(**values)


def unbind_orchestration_context() -> None:
    structlog.contextvars.unbind_contextvars("orchestration_id", "primary_agent")


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
