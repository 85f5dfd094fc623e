"""Provider dispatch - the only place that actually calls a language model.

``ProviderClient`` is the boundary the router depends on. The production
implementation sends the prompt through LiteLLM (optionally via a LiteLLM
proxy); tests substitute a fake.

This module:
- Wraps litellm.acompletion() with tenacity retries for transient failures
- Bounds every call by a deadline derived from the provider's latency
- Normalizes LiteLLM errors to ProviderError / ProviderTimeoutError
- Logs token usage
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import litellm
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from conductor.model_router.providers import ProviderProfile, estimate_tokens

log = structlog.get_logger(__name__)

_RETRYABLE = (
    litellm.exceptions.RateLimitError,
    litellm.exceptions.ServiceUnavailableError,
    ConnectionError,
)


class ProviderError(Exception):
    """A provider call failed."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """A provider call did not finish within its deadline."""


class ProviderRateLimitError(ProviderError):
    """The provider kept rate limiting after retries."""


@dataclass
class ProviderResult:
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    response_time_ms: float

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


class ProviderClient(Protocol):
    async def complete(
        self,
        provider: ProviderProfile,
        prompt: str,
        *,
        agent_name: str,
        task_type: str,
        timeout_seconds: float,
    ) -> ProviderResult:
        """Send ``prompt`` to ``provider`` and return its answer."""
        ...


def provider_timeout(provider: ProviderProfile, safety_factor: float) -> float:
    """Deadline in seconds for one call to ``provider``."""
    return provider.avg_response_time_ms / 1000.0 * safety_factor


def response_text(response: Any) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError, KeyError):
        return ""


def response_usage(response: Any) -> tuple[int, int] | None:
    """(prompt_tokens, completion_tokens) if the response reports usage."""
    usage = getattr(response, "usage", None)
    if not usage:
        return None
    try:
        return int(usage.prompt_tokens or 0), int(usage.completion_tokens or 0)
    except (AttributeError, TypeError, ValueError):
        return None


class LiteLLMProviderClient:
    """ProviderClient backed by LiteLLM.

    Args:
        api_base: LiteLLM proxy URL, or None to call providers directly
        api_key: Key sent with every call
        max_output_tokens: Completion token cap passed to every call
        temperature: Sampling temperature
    """

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        max_output_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> None:
        self._api_base = api_base
        self._api_key = api_key
        self._max_output_tokens = max_output_tokens
        self._temperature = temperature

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _acompletion(self, **kwargs: Any) -> Any:
        return await litellm.acompletion(**kwargs)

    async def complete(
        self,
        provider: ProviderProfile,
        prompt: str,
        *,
        agent_name: str,
        task_type: str,
        timeout_seconds: float,
    ) -> ProviderResult:
        """Call the provider's model through LiteLLM.

        Retries cover rate limits and outages; the deadline covers the
        retries too.

        Raises:
            ProviderTimeoutError: The call exceeded ``timeout_seconds``
            ProviderRateLimitError: Still rate limited after retries
            ProviderError: Any other LiteLLM failure
        """
        messages = [
            {
                "role": "system",
                "content": f"You are {agent_name}. Task type: {task_type}. Be concise.",
            },
            {"role": "user", "content": prompt},
        ]
        log.debug(
            "dispatch.request",
            provider=provider.name,
            model=provider.model_id,
            agent=agent_name,
            timeout_seconds=round(timeout_seconds, 2),
        )

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._acompletion(
                    model=provider.model_id,
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_output_tokens,
                    api_base=self._api_base,
                    api_key=self._api_key,
                ),
                timeout=timeout_seconds,
            )
        except (TimeoutError, litellm.exceptions.Timeout) as exc:
            raise ProviderTimeoutError(
                provider.name, f"no response within {timeout_seconds:.1f}s"
            ) from exc
        except litellm.exceptions.RateLimitError as exc:
            raise ProviderRateLimitError(provider.name, f"rate limited: {exc}") from exc
        except Exception as exc:
            raise ProviderError(provider.name, f"completion failed: {exc}") from exc

        elapsed_ms = (time.monotonic() - started) * 1000
        content = response_text(response)
        usage = response_usage(response)
        if usage is None:
            usage = (estimate_tokens(prompt), estimate_tokens(content))
        model = getattr(response, "model", None) or provider.model_id

        log.info(
            "dispatch.completed",
            provider=provider.name,
            model=model,
            prompt_tokens=usage[0],
            completion_tokens=usage[1],
            response_time_ms=round(elapsed_ms, 1),
        )
        return ProviderResult(
            content=content,
            model=model,
            input_tokens=usage[0],
            output_tokens=usage[1],
            response_time_ms=elapsed_ms,
        )
