"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
Provider model ids, budgets, cache sizing and planner limits live here so
the routing and orchestration layers never hardcode them.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(default="INFO", description="Minimum log level")
    log_json: bool | None = Field(
        default=None,
        description="Force JSON logs on/off. Defaults to JSON in prod only.",
    )

    # ------------------------------------------------------------------ #
    # Workspace / persistence
    # ------------------------------------------------------------------ #
    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Active project root; state lives in a dot-directory below it",
    )
    state_dir_name: str = Field(default=".conductor", description="State directory name")
    persist_state: bool = Field(
        default=True,
        description="Persist cache, usage metrics and cost config as JSON documents",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM Proxy
    # ------------------------------------------------------------------ #
    litellm_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for LiteLLM proxy",
    )
    provider_model_openai: str = Field(default="openai/gpt-4")
    provider_model_claude: str = Field(default="anthropic/claude-3-5-sonnet-20240620")
    provider_model_gemini: str = Field(default="gemini/gemini-1.5-pro")
    provider_model_ollama: str = Field(default="ollama/llama3")
    provider_max_output_tokens: int = Field(default=2048, ge=16, le=32768)
    provider_timeout_safety_factor: float = Field(
        default=10.0,
        gt=1.0,
        description="Provider call timeout = avg response time x this factor",
    )
    provider_fallback_strategy: Literal[
        "cost_optimized", "speed_optimized", "quality_optimized", "reliability_optimized"
    ] = Field(
        default="reliability_optimized",
        description="Order in which other providers are tried when a call fails",
    )

    # ------------------------------------------------------------------ #
    # Agent registry / planner
    # ------------------------------------------------------------------ #
    recommendation_limit: int = Field(default=5, ge=1, le=20)
    recommendation_threshold: float = Field(default=0.2, ge=0.0, lt=1.0)
    max_confidence: float = Field(default=0.95, gt=0.0, le=1.0)
    default_max_agents: int = Field(default=3, ge=1)
    max_agents_limit: int = Field(default=5, ge=1)

    # ------------------------------------------------------------------ #
    # Executor
    # ------------------------------------------------------------------ #
    max_concurrent_steps: int = Field(default=4, ge=1, le=64)
    step_timeout_seconds: float = Field(default=120.0, gt=0)

    # ------------------------------------------------------------------ #
    # Response cache
    # ------------------------------------------------------------------ #
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_default_ttl_seconds: int = Field(default=3600, ge=1)
    cache_ttl_rules: dict[str, int] = Field(
        default={
            "static_analysis": 24 * 60 * 60,
            "code_review": 12 * 60 * 60,
            "documentation": 48 * 60 * 60,
            "debugging": 1 * 60 * 60,
            "general": 6 * 60 * 60,
        },
        description="Cache TTL (seconds) per task type when the request sets none",
    )

    # ------------------------------------------------------------------ #
    # Budgets / ledger
    # ------------------------------------------------------------------ #
    emergency_threshold: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fraction of the daily budget that triggers emergency mode",
    )
    emergency_cache_ttl_multiplier: float = Field(default=4.0, ge=1.0)
    default_cost_budgets: dict[str, float] = Field(
        default={
            "DeveloperAgent": 5.00,
            "TesterAgent": 2.00,
            "SecurityAgent": 3.00,
            "PerformanceAgent": 2.50,
            "DocumentationAgent": 1.50,
        },
        description="Daily USD budget per agent or task type",
    )
    default_speed_thresholds: dict[str, int] = Field(
        default={
            "critical_task": 1000,
            "interactive_task": 2000,
            "background_task": 5000,
        },
        description="Max acceptable provider latency (ms) per task type",
    )
    single_request_alert_usd: float = Field(
        default=1.00,
        gt=0,
        description="Log a warning when one provider call costs more than this",
    )
    ledger_memory_limit: int = Field(default=10_000, ge=10)
    ledger_memory_retain: int = Field(default=5_000, ge=1)

    @model_validator(mode="after")
    def _check_limits(self) -> Settings:
        if self.ledger_memory_retain > self.ledger_memory_limit:
            raise ValueError("ledger_memory_retain must not exceed ledger_memory_limit")
        if self.default_max_agents > self.max_agents_limit:
            raise ValueError("default_max_agents must not exceed max_agents_limit")
        return self

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEV

    @property
    def json_logs(self) -> bool:
        return self.is_prod if self.log_json is None else self.log_json

    @property
    def state_dir(self) -> Path:
        return self.project_root / self.state_dir_name

    def provider_models(self) -> dict[str, str]:
        """Map provider name to the LiteLLM model identifier used for it."""
        return {
            "openai": self.provider_model_openai,
            "claude": self.provider_model_claude,
            "gemini": self.provider_model_gemini,
            "ollama": self.provider_model_ollama,
        }


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance. Call get_settings.cache_clear() in tests."""
    return Settings()
