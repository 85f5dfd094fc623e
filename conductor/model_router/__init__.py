"""Cost-aware request routing for LLM provider calls.

Every provider call made on behalf of an agent goes through the
RequestRouter, which composes:
- ResponseCache: deduplicates identical prompts
- PromptOptimizer: shrinks prompts before they are priced
- ProviderSelector: scores the provider catalog per request
- FallbackChain: retries a failed call on the next provider of a named chain
- BudgetController: daily budgets with emergency downgrade to a free provider
- UsageLedger: append-only cost log and analytics
"""

from __future__ import annotations

from conductor.model_router.budget import BudgetController, BudgetState
from conductor.model_router.cache import ResponseCache, hash_prompt
from conductor.model_router.dispatch import (
    LiteLLMProviderClient,
    ProviderClient,
    ProviderError,
    ProviderRateLimitError,
    ProviderResult,
    ProviderTimeoutError,
)
from conductor.model_router.fallback import FallbackChain, ProviderFallbackError
from conductor.model_router.ledger import UsageLedger, UsageRecord
from conductor.model_router.optimizer import CostOptimizationResult, PromptOptimizer
from conductor.model_router.providers import ProviderCatalog, ProviderProfile, default_catalog
from conductor.model_router.requests import Priority, RouteRequest, RouteResponse, RouteStatus
from conductor.model_router.router import RequestRouter
from conductor.model_router.selector import ProviderSelection, ProviderSelector

__all__ = [
    "BudgetController",
    "BudgetState",
    "CostOptimizationResult",
    "FallbackChain",
    "LiteLLMProviderClient",
    "Priority",
    "PromptOptimizer",
    "ProviderCatalog",
    "ProviderClient",
    "ProviderError",
    "ProviderFallbackError",
    "ProviderRateLimitError",
    "ProviderProfile",
    "ProviderResult",
    "ProviderSelection",
    "ProviderSelector",
    "ProviderTimeoutError",
    "RequestRouter",
    "ResponseCache",
    "RouteRequest",
    "RouteResponse",
    "RouteStatus",
    "UsageLedger",
    "UsageRecord",
    "default_catalog",
    "hash_prompt",
]
