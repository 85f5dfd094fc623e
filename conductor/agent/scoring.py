"""Agent scoring strategies.

A scorer rates how well one agent fits a task description. The registry
only depends on the ``AgentScorer`` protocol, so the keyword heuristic
below can be swapped for another strategy without touching ranking,
filtering or orchestration.

KeywordAgentScorer (all matching is on the lowercased task text):
- +0.3 for every capability whose words (underscores as spaces) occur
- +0.4 x the fraction of task words that also occur in the description
- +0.2 if the agent owns a tool relevant to the task's keyword categories
- if the task mentions file/terminal/network/system/deploy: +0.1 when the
  agent holds the implied permissions, -0.2 when it does not
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from conductor.agent.registry import AgentDefinition

CAPABILITY_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.4
TOOL_BONUS = 0.2
PERMISSION_BONUS = 0.1
PERMISSION_PENALTY = 0.2

TOOL_MAPPINGS: dict[str, tuple[str, ...]] = {
    "debug": ("debug.intelligent",),
    "test": ("qa.runChecks", "code.generate"),
    "code": ("code.generate", "code.modify"),
    "security": ("security.scanFile",),
    "deploy": ("dependency.add",),
    "collaborate": ("pair.programming",),
}

SENSITIVE_KEYWORDS = ("file", "terminal", "network", "system", "deploy")

# Keyword -> permission the agent must hold when the task mentions it
PERMISSION_KEYWORDS: dict[str, str] = {
    "file": "file_system_access",
    "terminal": "terminal_access",
    "network": "network_access",
}


@dataclass
class AgentScore:
    value: float
    reasons: list[str] = field(default_factory=list)


class AgentScorer(Protocol):
    def score(self, agent: AgentDefinition, task_description: str) -> AgentScore:
        """Rate ``agent`` against ``task_description``."""
        ...


def relevant_tools(task_description: str) -> set[str]:
    lowered = task_description.lower()
    tools: set[str] = set()
    for keyword, mapped in TOOL_MAPPINGS.items():
        if keyword in lowered:
            tools.update(mapped)
    return tools


def requires_special_permissions(task_description: str) -> bool:
    lowered = task_description.lower()
    return any(keyword in lowered for keyword in SENSITIVE_KEYWORDS)


def has_required_permissions(agent: AgentDefinition, task_description: str) -> bool:
    lowered = task_description.lower()
    return all(
        agent.permissions.get(permission, False)
        for keyword, permission in PERMISSION_KEYWORDS.items()
        if keyword in lowered
    )


class KeywordAgentScorer:
    """Keyword and overlap heuristic used by default."""

    def score(self, agent: AgentDefinition, task_description: str) -> AgentScore:
        task_lower = task_description.lower()
        value = 0.0
        reasons: list[str] = []

        for capability in agent.capabilities:
            if capability.replace("_", " ").lower() in task_lower:
                value += CAPABILITY_WEIGHT
                reasons.append(f"Strong capability match: {capability}")

        task_words = task_lower.split()
        if task_words:
            description_words = set(agent.description.lower().split())
            common = sum(1 for word in task_words if word in description_words)
            if common:
                value += common / len(task_words) * DESCRIPTION_WEIGHT
                reasons.append(f"Description overlap: {common}/{len(task_words)} words")

        tools = relevant_tools(task_description)
        if tools and any(tool in tools for tool in agent.tools):
            value += TOOL_BONUS
            reasons.append("Has relevant tools for task")

        if requires_special_permissions(task_description):
            if has_required_permissions(agent, task_description):
                value += PERMISSION_BONUS
                reasons.append("Has required permissions")
            else:
                value -= PERMISSION_PENALTY
                reasons.append("Missing required permissions")

        return AgentScore(value=value, reasons=reasons)
