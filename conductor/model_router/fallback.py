"""Provider fallback chains.

When the chosen provider fails, the request is retried on the next provider
of a named chain until one answers or the chain is exhausted:

1. Try the selected provider
2. On ProviderError, try the next chain provider that is still eligible
3. If every eligible provider fails, raise ProviderFallbackError

A provider is eligible unless it was already tried, it is paid while the
request is in emergency mode, or its estimated cost exceeds the request's
cost limit.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal, TypeVar

import structlog

from conductor.model_router.dispatch import ProviderError
from conductor.model_router.providers import ProviderCatalog, ProviderProfile

log = structlog.get_logger(__name__)

T = TypeVar("T")

FallbackStrategy = Literal[
    "cost_optimized",
    "speed_optimized",
    "quality_optimized",
    "reliability_optimized",
]

FALLBACK_CHAINS: dict[str, tuple[str, ...]] = {
    "cost_optimized": ("ollama", "gemini", "claude", "openai"),
    "speed_optimized": ("claude", "gemini", "openai", "ollama"),
    "quality_optimized": ("openai", "claude", "gemini", "ollama"),
    "reliability_optimized": ("claude", "openai", "gemini", "ollama"),
}

DEFAULT_FALLBACK_STRATEGY: FallbackStrategy = "reliability_optimized"


class ProviderFallbackError(ProviderError):
    """Every provider of the fallback chain failed."""

    def __init__(self, provider: str, attempts: list[dict[str, Any]], last_error: Exception) -> None:
        tried = ", ".join(a["provider"] for a in attempts)
        super().__init__(provider, f"all providers failed ({tried}); last error: {last_error}")
        self.attempts = attempts


class FallbackChain:
    """Ordered provider fallback over a catalog.

    Args:
        catalog: Provider profiles
        order: Provider names in fallback order; names missing from the
            catalog are ignored
    """

    def __init__(self, catalog: ProviderCatalog, order: Sequence[str]) -> None:
        self._catalog = catalog
        self._order = [name for name in order if name in catalog]

    @classmethod
    def for_strategy(
        cls,
        catalog: ProviderCatalog,
        strategy: str = DEFAULT_FALLBACK_STRATEGY,
    ) -> FallbackChain:
        """Chain for one of the named strategies.

        Raises:
            ValueError: If ``strategy`` is not a known chain
        """
        try:
            order = FALLBACK_CHAINS[strategy]
        except KeyError:
            raise ValueError(f"unknown fallback strategy: {strategy}") from None
        return cls(catalog, order)

    @property
    def order(self) -> list[str]:
        return list(self._order)

    def candidates(
        self,
        preferred: ProviderProfile,
        *,
        zero_cost_only: bool = False,
        prompt_tokens: int = 0,
        cost_limit: float | None = None,
    ) -> list[ProviderProfile]:
        """Preferred provider first, then every eligible chain provider."""
        result = [preferred]
        for name in self._order:
            if name == preferred.name:
                continue
            profile = self._catalog.get(name)
            if zero_cost_only and not profile.is_free:
                continue
            if cost_limit is not None and profile.estimate_cost(prompt_tokens) > cost_limit:
                continue
            result.append(profile)
        return result

    async def execute(
        self,
        call: Callable[[ProviderProfile], Awaitable[T]],
        candidates: Sequence[ProviderProfile],
    ) -> tuple[T, ProviderProfile]:
        """Run ``call`` against each candidate until one succeeds.

        Returns:
            Tuple of (result, provider that produced it)

        Raises:
            ProviderFallbackError: If every candidate raised ProviderError
        """
        if not candidates:
            raise ValueError("fallback needs at least one candidate provider")
        attempts: list[dict[str, Any]] = []
        last_error: ProviderError | None = None

        for position, provider in enumerate(candidates):
            try:
                result = await call(provider)
            except ProviderError as exc:
                last_error = exc
                attempts.append(
                    {
                        "provider": provider.name,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                )
                log.warning(
                    "fallback.provider_failed",
                    provider=provider.name,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    remaining_providers=len(candidates) - position - 1,
                )
                continue

            if position > 0:
                log.info(
                    "fallback.provider_succeeded",
                    provider=provider.name,
                    preferred=candidates[0].name,
                    attempts=position + 1,
                )
            return result, provider

        log.error(
            "fallback.all_providers_failed",
            preferred=candidates[0].name,
            attempted=[a["provider"] for a in attempts],
        )
        raise ProviderFallbackError(candidates[0].name, attempts, last_error) from last_error  # type: ignore[arg-type]
