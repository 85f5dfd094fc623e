"""Provider selector - scores every catalog provider for one request.

score = 0.4 * cost + (0.4 if speed_priority else 0.2) * speed
        + 0.3 * suitability + 0.1 * reliability

- cost: 100 for a free provider, else max(0, 100 - estimated_cost * 10000)
- speed: max(0, 100 - avg_response_time_ms / 50)
- suitability: 100 if the task type is in ``optimal_for``, 80 if any
  strength is a substring of the task type, else 50
- reliability: reliability_score * 100

The highest score wins; ties keep catalog order. Selection is a pure
function of the catalog and the inputs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import structlog

from conductor.model_router.providers import CHARS_PER_TOKEN, ProviderCatalog, ProviderProfile

log = structlog.get_logger(__name__)

COST_WEIGHT = 0.4
SPEED_WEIGHT = 0.2
SPEED_PRIORITY_WEIGHT = 0.4
SUITABILITY_WEIGHT = 0.3
RELIABILITY_WEIGHT = 0.1


@dataclass
class ProviderScore:
    provider: str
    score: float
    cost_score: float
    speed_score: float
    suitability_score: float
    reliability_score: float
    estimated_cost: float


@dataclass
class ProviderSelection:
    """Outcome of a selection: the winner plus every candidate's score."""

    provider: ProviderProfile
    score: float
    estimated_cost: float
    prompt_tokens: int
    candidates: list[ProviderScore] = field(default_factory=list)
    speed_filter_applied: bool = False


class ProviderSelector:
    def __init__(self, catalog: ProviderCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> ProviderCatalog:
        return self._catalog

    def score(
        self,
        profile: ProviderProfile,
        task_type: str,
        prompt_tokens: int,
        speed_priority: bool = False,
    ) -> ProviderScore:
        estimated_cost = profile.estimate_cost(prompt_tokens)
        cost_score = 100.0 if estimated_cost == 0 else max(0.0, 100.0 - estimated_cost * 10000)
        speed_score = max(0.0, 100.0 - profile.avg_response_time_ms / 50)
        if task_type in profile.optimal_for:
            suitability = 100.0
        elif any(strength in task_type for strength in profile.strengths):
            suitability = 80.0
        else:
            suitability = 50.0
        reliability = profile.reliability_score * 100

        total = (
            cost_score * COST_WEIGHT
            + speed_score * (SPEED_PRIORITY_WEIGHT if speed_priority else SPEED_WEIGHT)
            + suitability * SUITABILITY_WEIGHT
            + reliability * RELIABILITY_WEIGHT
        )
        return ProviderScore(
            provider=profile.name,
            score=total,
            cost_score=cost_score,
            speed_score=speed_score,
            suitability_score=suitability,
            reliability_score=reliability,
            estimated_cost=estimated_cost,
        )

    def select(
        self,
        task_type: str,
        prompt_length: int,
        speed_priority: bool = False,
        max_response_time_ms: int | None = None,
    ) -> ProviderSelection:
        """Pick the best provider for a prompt of ``prompt_length`` characters.

        Args:
            task_type: Task type tag matched against provider suitability
            prompt_length: Length of the (optimised) prompt in characters
            speed_priority: Double the weight of the latency term
            max_response_time_ms: Optional speed threshold; providers slower
                than this are skipped unless that would skip all of them

        Returns:
            ProviderSelection for the winning provider
        """
        prompt_tokens = math.ceil(prompt_length / CHARS_PER_TOKEN)
        profiles = list(self._catalog)
        filtered = False
        if max_response_time_ms is not None:
            fast_enough = [p for p in profiles if p.avg_response_time_ms <= max_response_time_ms]
            if fast_enough:
                filtered = len(fast_enough) != len(profiles)
                profiles = fast_enough
            else:
                log.warning(
                    "selector.speed_threshold_unsatisfiable",
                    task_type=task_type,
                    max_response_time_ms=max_response_time_ms,
                )

        candidates = [self.score(p, task_type, prompt_tokens, speed_priority) for p in profiles]
        best_index = 0
        for index, candidate in enumerate(candidates):
            if candidate.score > candidates[best_index].score:
                best_index = index
        best = candidates[best_index]

        log.debug(
            "selector.provider_selected",
            provider=best.provider,
            task_type=task_type,
            score=round(best.score, 2),
            prompt_tokens=prompt_tokens,
        )
        return ProviderSelection(
            provider=profiles[best_index],
            score=best.score,
            estimated_cost=best.estimated_cost,
            prompt_tokens=prompt_tokens,
            candidates=candidates,
            speed_filter_applied=filtered,
        )
