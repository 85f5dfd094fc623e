"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from conductor.config import Environment, Settings, get_settings


class TestSettings:
    """Test Settings model and validation."""

    def test_default_settings_load_correctly(self, tmp_path):
        """Defaults describe the documented routing and planning behaviour."""
        settings = Settings(project_root=tmp_path)

        assert settings.environment == Environment.DEV
        assert settings.cache_max_entries == 1000
        assert settings.emergency_threshold == 0.9
        assert settings.default_max_agents == 3
        assert settings.max_agents_limit == 5
        assert settings.default_cost_budgets["DeveloperAgent"] == 5.00

    def test_cache_ttl_rules_cover_general_tasks(self, tmp_path):
        """Requests without a specific task type are cached for six hours."""
        rules = Settings(project_root=tmp_path).cache_ttl_rules
        assert rules["general"] == 6 * 3600
        assert rules["debugging"] == 3600

    def test_fallback_strategy(self, tmp_path):
        """Reliability-first by default; unknown strategies are rejected."""
        assert Settings(project_root=tmp_path).provider_fallback_strategy == "reliability_optimized"
        with pytest.raises(ValidationError):
            Settings(project_root=tmp_path, provider_fallback_strategy="fastest")

    def test_state_dir_is_below_project_root(self, tmp_path):
        """State lives in a dot-directory of the active project."""
        settings = Settings(project_root=tmp_path)
        assert settings.state_dir == tmp_path / ".conductor"

    def test_json_logs_follow_environment_unless_forced(self, tmp_path):
        """JSON logs default to prod only; log_json overrides either way."""
        assert Settings(project_root=tmp_path).json_logs is False
        assert Settings(project_root=tmp_path, environment=Environment.PROD).json_logs is True
        assert Settings(project_root=tmp_path, log_json=True).json_logs is True

    def test_environment_flags(self, tmp_path):
        """is_dev / is_prod reflect the configured environment."""
        dev = Settings(project_root=tmp_path, environment=Environment.DEV)
        prod = Settings(project_root=tmp_path, environment=Environment.PROD)
        assert dev.is_dev and not dev.is_prod
        assert prod.is_prod and not prod.is_dev

    def test_provider_models_map(self, tmp_path):
        """Every catalog provider has a model identifier."""
        models = Settings(project_root=tmp_path, provider_model_ollama="ollama/qwen").provider_models()
        assert set(models) == {"openai", "claude", "gemini", "ollama"}
        assert models["ollama"] == "ollama/qwen"


class TestSettingsValidation:
    """Cross-field and range validation."""

    def test_retain_above_limit_rejected(self, tmp_path):
        with pytest.raises(ValidationError, match="ledger_memory_retain"):
            Settings(project_root=tmp_path, ledger_memory_limit=100, ledger_memory_retain=200)

    def test_default_agents_above_limit_rejected(self, tmp_path):
        with pytest.raises(ValidationError, match="default_max_agents"):
            Settings(project_root=tmp_path, default_max_agents=6, max_agents_limit=5)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("emergency_threshold", 0.0),
            ("emergency_threshold", 1.5),
            ("step_timeout_seconds", 0),
            ("max_concurrent_steps", 0),
            ("provider_timeout_safety_factor", 1.0),
        ],
    )
    def test_out_of_range_values_rejected(self, tmp_path, field, value):
        with pytest.raises(ValidationError):
            Settings(project_root=tmp_path, **{field: value})


class TestEnvironmentOverrides:
    """Settings come from environment variables."""

    def test_scalar_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CACHE_MAX_ENTRIES", "50")
        monkeypatch.setenv("ENVIRONMENT", "test")
        settings = Settings(project_root=tmp_path)
        assert settings.cache_max_entries == 50
        assert settings.environment == Environment.TEST

    def test_mapping_override_is_json(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEFAULT_COST_BUDGETS", '{"ReviewerAgent": 1.5}')
        assert Settings(project_root=tmp_path).default_cost_budgets == {"ReviewerAgent": 1.5}

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
