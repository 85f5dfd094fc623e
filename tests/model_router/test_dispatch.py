"""Tests for LiteLLMProviderClient.

litellm.acompletion is patched; nothing leaves the process.

Tests cover:
- Prompt and model forwarded to LiteLLM
- Token usage taken from the response, estimated when absent
- Transient failures retried, persistent ones normalized to ProviderError
- Deadline expiry surfaces as ProviderTimeoutError
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from tenacity import wait_none

from conductor.model_router.dispatch import (
    LiteLLMProviderClient,
    ProviderError,
    ProviderTimeoutError,
    provider_timeout,
)


def _make_mock_litellm_response(content: str, usage: tuple[int, int] | None = (100, 50)) -> MagicMock:
    mock_message = MagicMock()
    mock_message.content = content
    mock_choice = MagicMock()
    mock_choice.message = mock_message
    mock_response = MagicMock()
    mock_response.choices = [mock_choice]
    mock_response.model = "anthropic/claude-3-5-sonnet-20240620"
    if usage is None:
        mock_response.usage = None
    else:
        mock_response.usage = MagicMock(prompt_tokens=usage[0], completion_tokens=usage[1])
    return mock_response


@pytest.fixture
def claude(catalog):
    return catalog.get("claude")


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(LiteLLMProviderClient._acompletion.retry, "wait", wait_none())


class TestComplete:
    @pytest.mark.asyncio
    async def test_forwards_prompt_and_model(self, claude):
        client = LiteLLMProviderClient(api_base="http://proxy:4000", api_key="sk-test")
        mock_resp = _make_mock_litellm_response("Looks fine.")

        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=mock_resp) as mock_call:
            result = await client.complete(
                claude,
                "Review this diff.",
                agent_name="TechLeadAgent",
                task_type="code_review",
                timeout_seconds=5.0,
            )

        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == claude.model_id
        assert kwargs["messages"][-1] == {"role": "user", "content": "Review this diff."}
        assert "TechLeadAgent" in kwargs["messages"][0]["content"]
        assert kwargs["api_base"] == "http://proxy:4000"
        assert result.content == "Looks fine."
        assert (result.input_tokens, result.output_tokens) == (100, 50)
        assert result.tokens_used == 150

    @pytest.mark.asyncio
    async def test_usage_estimated_when_missing(self, claude):
        client = LiteLLMProviderClient()
        mock_resp = _make_mock_litellm_response("a" * 40, usage=None)

        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=mock_resp):
            result = await client.complete(
                claude, "b" * 20, agent_name="A", task_type="general", timeout_seconds=5.0
            )

        assert (result.input_tokens, result.output_tokens) == (5, 10)


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, claude, no_retry_wait):
        client = LiteLLMProviderClient()
        mock_resp = _make_mock_litellm_response("ok")

        with patch(
            "litellm.acompletion",
            new_callable=AsyncMock,
            side_effect=[ConnectionError("reset"), mock_resp],
        ) as mock_call:
            result = await client.complete(
                claude, "hi", agent_name="A", task_type="general", timeout_seconds=5.0
            )

        assert result.content == "ok"
        assert mock_call.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_error_becomes_provider_error(self, claude, no_retry_wait):
        client = LiteLLMProviderClient()

        with patch(
            "litellm.acompletion", new_callable=AsyncMock, side_effect=ConnectionError("down")
        ) as mock_call:
            with pytest.raises(ProviderError) as exc_info:
                await client.complete(
                    claude, "hi", agent_name="A", task_type="general", timeout_seconds=5.0
                )

        assert mock_call.await_count == 3
        assert exc_info.value.provider == "claude"

    @pytest.mark.asyncio
    async def test_non_transient_error_is_not_retried(self, claude):
        client = LiteLLMProviderClient()

        with patch(
            "litellm.acompletion", new_callable=AsyncMock, side_effect=ValueError("bad request")
        ) as mock_call:
            with pytest.raises(ProviderError, match="bad request"):
                await client.complete(
                    claude, "hi", agent_name="A", task_type="general", timeout_seconds=5.0
                )

        assert mock_call.await_count == 1

    @pytest.mark.asyncio
    async def test_deadline_expiry(self, claude):
        client = LiteLLMProviderClient()

        async def never_answers(**kwargs):
            await asyncio.Event().wait()

        with patch("litellm.acompletion", side_effect=never_answers):
            with pytest.raises(ProviderTimeoutError):
                await client.complete(
                    claude, "hi", agent_name="A", task_type="general", timeout_seconds=0.05
                )


def test_provider_timeout_scales_average_latency(claude):
    assert provider_timeout(claude, 10.0) == pytest.approx(claude.avg_response_time_ms / 100.0)
