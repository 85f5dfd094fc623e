"""Provider cost model - static profiles for the LLM backends we can route to.

Each profile carries per-token prices, observed average latency, a
reliability score and the task-type tags the provider is strongest at. The
selector scores providers purely from this table; nothing here talks to the
network.

Default catalog (USD per token):
- openai: 30e-6 in / 60e-6 out, ~2000 ms
- claude: 15e-6 in / 75e-6 out, ~1500 ms
- gemini: 3.5e-6 in / 10.5e-6 out, ~1800 ms
- ollama: free, local, ~3000 ms (the zero-cost emergency provider)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conductor.config import Settings

# Output tokens are assumed to be this fraction of the prompt's token count
# when estimating cost before the call.
OUTPUT_TOKEN_RATIO = 0.3

CHARS_PER_TOKEN = 4

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY_SECONDS = 1.0


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class ProviderProfile:
    """Cost, latency and suitability profile of one provider.

    Attributes:
        name: Short provider key ("openai", "claude", ...)
        display_name: Human-readable name for reports
        model_id: LiteLLM model identifier used when dispatching
        cost_per_input_token: USD per prompt token
        cost_per_output_token: USD per completion token
        avg_response_time_ms: Typical end-to-end latency
        reliability_score: Observed success rate in [0, 1]
        strengths: Capability tags, substring-matched against task types
        optimal_for: Task types this provider is the natural choice for
        batch_size: Max requests dispatched together in one batch
        batch_delay_seconds: Pause between consecutive batches
    """

    name: str
    display_name: str
    model_id: str
    cost_per_input_token: float
    cost_per_output_token: float
    avg_response_time_ms: int
    reliability_score: float
    strengths: tuple[str, ...] = field(default_factory=tuple)
    optimal_for: tuple[str, ...] = field(default_factory=tuple)
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("provider name must not be empty")
        if self.cost_per_input_token < 0 or self.cost_per_output_token < 0:
            raise ValueError("token costs cannot be negative")
        if self.avg_response_time_ms <= 0:
            raise ValueError("avg_response_time_ms must be positive")
        if not 0.0 <= self.reliability_score <= 1.0:
            raise ValueError("reliability_score must be in [0, 1]")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds cannot be negative")

    @property
    def is_free(self) -> bool:
        return self.cost_per_input_token == 0 and self.cost_per_output_token == 0

    def estimate_cost(self, prompt_tokens: int) -> float:
        """Estimated USD cost for a prompt of ``prompt_tokens`` tokens.

        Output size is not known before the call, so it is assumed to be
        ``OUTPUT_TOKEN_RATIO`` of the prompt.
        """
        output_tokens = prompt_tokens * OUTPUT_TOKEN_RATIO
        return (
            prompt_tokens * self.cost_per_input_token
            + output_tokens * self.cost_per_output_token
        )

    def actual_cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.cost_per_input_token + output_tokens * self.cost_per_output_token


def default_catalog(settings: Settings | None = None) -> list[ProviderProfile]:
    """Build the default provider catalog, in selection tie-break order."""
    models = settings.provider_models() if settings is not None else {}
    return [
        ProviderProfile(
            name="openai",
            display_name="OpenAI GPT-4",
            model_id=models.get("openai", "openai/gpt-4"),
            cost_per_input_token=0.00003,
            cost_per_output_token=0.00006,
            avg_response_time_ms=2000,
            reliability_score=0.95,
            strengths=("code_generation", "debugging", "explanation"),
            optimal_for=("complex_reasoning", "code_generation", "problem_solving"),
            batch_size=5,
            batch_delay_seconds=1.0,
        ),
        ProviderProfile(
            name="claude",
            display_name="Anthropic Claude",
            model_id=models.get("claude", "anthropic/claude-3-5-sonnet-20240620"),
            cost_per_input_token=0.000015,
            cost_per_output_token=0.000075,
            avg_response_time_ms=1500,
            reliability_score=0.97,
            strengths=("code_analysis", "refactoring", "architecture"),
            optimal_for=("code_analysis", "refactoring", "documentation"),
            batch_size=3,
            batch_delay_seconds=1.5,
        ),
        ProviderProfile(
            name="gemini",
            display_name="Google Gemini",
            model_id=models.get("gemini", "gemini/gemini-1.5-pro"),
            cost_per_input_token=0.0000035,
            cost_per_output_token=0.0000105,
            avg_response_time_ms=1800,
            reliability_score=0.92,
            strengths=("multimodal", "analysis", "reasoning"),
            optimal_for=("data_analysis", "research", "planning"),
            batch_size=8,
            batch_delay_seconds=0.8,
        ),
        ProviderProfile(
            name="ollama",
            display_name="Ollama (local)",
            model_id=models.get("ollama", "ollama/llama3"),
            cost_per_input_token=0.0,
            cost_per_output_token=0.0,
            avg_response_time_ms=3000,
            reliability_score=0.88,
            strengths=("privacy", "offline", "cost_free"),
            optimal_for=("privacy_sensitive", "offline_work", "cost_optimization"),
            batch_size=1,
            batch_delay_seconds=0.0,
        ),
    ]


class ProviderCatalog:
    """Read-only, ordered lookup over provider profiles."""

    def __init__(self, profiles: list[ProviderProfile] | None = None) -> None:
        profiles = profiles if profiles is not None else default_catalog()
        if not profiles:
            raise ValueError("provider catalog must not be empty")
        self._profiles: dict[str, ProviderProfile] = {}
        for profile in profiles:
            if profile.name in self._profiles:
                raise ValueError(f"duplicate provider profile: {profile.name}")
            self._profiles[profile.name] = profile

    def __iter__(self):
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def get(self, name: str) -> ProviderProfile:
        """Return the profile for ``name``.

        Raises:
            KeyError: If the provider is not in the catalog
        """
        try:
            return self._profiles[name]
        except KeyError:
            raise KeyError(f"Unknown provider: {name}") from None

    def names(self) -> list[str]:
        return list(self._profiles)

    def zero_cost_provider(self) -> ProviderProfile:
        """Return the first free provider (the emergency downgrade target).

        Raises:
            LookupError: If the catalog has no free provider
        """
        for profile in self._profiles.values():
            if profile.is_free:
                return profile
        raise LookupError("provider catalog has no zero-cost provider")
