"""Tests for structured logging setup and orchestration log context."""

import json
import logging

import pytest
import structlog

from conductor.telemetry.logging import (
    bind_orchestration_context,
    clear_context,
    configure_logging,
    unbind_orchestration_context,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_dev_logging_configuration():
    """Dev mode renders to the console without crashing."""
    configure_logging(json_logs=False, log_level="DEBUG")

    log = structlog.get_logger(__name__)
    log.info("test.message", test_key="test_value")


def test_json_logs_carry_orchestration_id(caplog):
    configure_logging(json_logs=True, log_level="INFO")
    caplog.set_level(logging.INFO, logger="conductor.test")
    bind_orchestration_context("orch_abc", primary_agent="DeveloperAgent")

    structlog.get_logger("conductor.test").info("test.event", cost=0.5)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "test.event"
    assert payload["orchestration_id"] == "orch_abc"
    assert payload["primary_agent"] == "DeveloperAgent"
    assert payload["level"] == "info"


def test_log_context_binding():
    bind_orchestration_context("orch_1")
    assert structlog.contextvars.get_contextvars() == {"orchestration_id": "orch_1"}

    unbind_orchestration_context()
    assert structlog.contextvars.get_contextvars() == {}

    bind_orchestration_context("orch_2", primary_agent="TesterAgent")
    clear_context()
    assert structlog.contextvars.get_contextvars() == {}
