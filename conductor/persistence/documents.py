"""Pydantic schemas for the persisted JSON documents.

These validate what comes off disk before it reaches the in-memory
structures. Anything that fails validation is treated like a corrupt
document by the caller: logged and skipped.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AgentDefinitionDocument(BaseModel):
    """On-disk shape of ``*.agent.definition.json``."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""
    role: str = ""
    capabilities: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    permissions: dict[str, bool] = Field(default_factory=dict)
    can_call: list[str] = Field(default_factory=list)
    provider: str | None = None
    model: str | None = None
    initial_prompt_template: str = ""


class CacheEntryDocument(BaseModel):
    prompt_hash: str
    response: dict[str, Any]
    created_at: float
    ttl_seconds: float = Field(gt=0)


class ResponseCacheDocument(BaseModel):
    """``response_cache.json``: entries in insertion order."""

    entries: list[CacheEntryDocument] = Field(default_factory=list)


class BudgetSpendDocument(BaseModel):
    spent_today: float = Field(default=0.0, ge=0)
    window_date: str = ""
    downgraded: bool = False


class CostConfigDocument(BaseModel):
    """``cost_config.json``: budgets, speed thresholds and today's spend."""

    budgets: dict[str, float] = Field(default_factory=dict)
    speed_thresholds: dict[str, int] = Field(default_factory=dict)
    spend: dict[str, BudgetSpendDocument] = Field(default_factory=dict)
