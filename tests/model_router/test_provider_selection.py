"""Tests for the provider cost model and ProviderSelector.

Tests cover:
- Default catalog contents and order
- Cost estimation with the assumed output overhead
- Zero-cost provider lookup
- Scoring formula (code_analysis at 50 prompt tokens)
- Claude wins code_analysis despite Gemini's lower price
- Speed priority and speed thresholds
- Determinism
"""

from __future__ import annotations

import pytest

from conductor.config import Settings
from conductor.model_router.providers import (
    ProviderCatalog,
    ProviderProfile,
    default_catalog,
    estimate_tokens,
)
from conductor.model_router.selector import ProviderSelector


# ------------------------------------------------------------------ #
# Cost model
# ------------------------------------------------------------------ #


class TestProviderCatalog:
    def test_default_catalog_order(self, catalog):
        assert catalog.names() == ["openai", "claude", "gemini", "ollama"]

    def test_zero_cost_provider_is_ollama(self, catalog):
        provider = catalog.zero_cost_provider()
        assert provider.name == "ollama"
        assert provider.is_free

    def test_zero_cost_provider_missing_raises(self):
        paid = [p for p in default_catalog() if not p.is_free]
        with pytest.raises(LookupError):
            ProviderCatalog(paid).zero_cost_provider()

    def test_unknown_provider_raises_key_error(self, catalog):
        with pytest.raises(KeyError):
            catalog.get("mistral")

    def test_duplicate_profiles_rejected(self):
        profile = default_catalog()[0]
        with pytest.raises(ValueError, match="duplicate"):
            ProviderCatalog([profile, profile])

    def test_model_ids_come_from_settings(self, tmp_path):
        settings = Settings(project_root=tmp_path, provider_model_claude="anthropic/claude-test")
        catalog = ProviderCatalog(default_catalog(settings))
        assert catalog.get("claude").model_id == "anthropic/claude-test"

    def test_estimate_cost_includes_output_overhead(self, catalog):
        claude = catalog.get("claude")
        # 50 input tokens + 15 assumed output tokens
        assert claude.estimate_cost(50) == pytest.approx(50 * 0.000015 + 15 * 0.000075)

    def test_free_provider_costs_nothing(self, catalog):
        assert catalog.get("ollama").estimate_cost(10_000) == 0

    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abc") == 1
        assert estimate_tokens("a" * 200) == 50

    def test_invalid_profile_rejected(self):
        with pytest.raises(ValueError):
            ProviderProfile(
                name="broken",
                display_name="Broken",
                model_id="x/y",
                cost_per_input_token=0.0,
                cost_per_output_token=0.0,
                avg_response_time_ms=100,
                reliability_score=1.5,
            )


# ------------------------------------------------------------------ #
# Selection
# ------------------------------------------------------------------ #


class TestProviderSelector:
    def test_scores_follow_the_documented_formula(self, catalog):
        selection = ProviderSelector(catalog).select("code_analysis", prompt_length=200)
        scores = {c.provider: round(c.score, 2) for c in selection.candidates}
        assert scores == {
            "openai": 66.9,
            "claude": 86.2,
            "gemini": 84.67,
            "ollama": 71.8,
        }

    def test_claude_wins_code_analysis(self, catalog):
        selection = ProviderSelector(catalog).select("code_analysis", prompt_length=200)
        assert selection.provider.name == "claude"
        assert selection.prompt_tokens == 50

    def test_suitability_levels(self, catalog):
        selector = ProviderSelector(catalog)
        claude = catalog.get("claude")
        gemini = catalog.get("gemini")
        openai = catalog.get("openai")
        assert selector.score(claude, "code_analysis", 10).suitability_score == 100
        assert selector.score(gemini, "code_analysis", 10).suitability_score == 80
        assert selector.score(openai, "code_analysis", 10).suitability_score == 50

    def test_speed_priority_doubles_latency_weight(self, catalog):
        selector = ProviderSelector(catalog)
        claude = catalog.get("claude")
        slow = selector.score(claude, "general", 10, speed_priority=False)
        fast = selector.score(claude, "general", 10, speed_priority=True)
        assert fast.score - slow.score == pytest.approx(slow.speed_score * 0.2)

    def test_speed_threshold_filters_slow_providers(self, catalog):
        selection = ProviderSelector(catalog).select(
            "privacy_sensitive", prompt_length=40, max_response_time_ms=1600
        )
        assert selection.provider.name == "claude"
        assert selection.speed_filter_applied
        assert [c.provider for c in selection.candidates] == ["claude"]

    def test_unsatisfiable_threshold_falls_back_to_all(self, catalog):
        selection = ProviderSelector(catalog).select(
            "code_analysis", prompt_length=200, max_response_time_ms=100
        )
        assert len(selection.candidates) == len(catalog)
        assert not selection.speed_filter_applied
        assert selection.provider.name == "claude"

    def test_selection_is_deterministic(self, catalog):
        selector = ProviderSelector(catalog)
        first = selector.select("code_generation", prompt_length=1234, speed_priority=True)
        second = selector.select("code_generation", prompt_length=1234, speed_priority=True)
        assert first.provider.name == second.provider.name
        assert first.score == second.score
