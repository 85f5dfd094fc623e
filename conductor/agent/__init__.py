"""Worker agents: definitions, registry and scoring."""

from __future__ import annotations

from conductor.agent.registry import (
    AgentDefinition,
    AgentDefinitionError,
    AgentRecommendation,
    AgentRegistry,
    RegistrationResult,
)
from conductor.agent.scoring import AgentScore, AgentScorer, KeywordAgentScorer

__all__ = [
    "AgentDefinition",
    "AgentDefinitionError",
    "AgentRecommendation",
    "AgentRegistry",
    "AgentScore",
    "AgentScorer",
    "KeywordAgentScorer",
    "RegistrationResult",
]
