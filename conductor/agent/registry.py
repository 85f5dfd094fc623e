"""Agent registry - worker agent definitions, indexing and recommendation.

Agents are immutable AgentDefinition records loaded once, from
``*.agent.definition.json`` files or the built-in defaults. The registry
indexes them by capability tag and by domain inferred from their
description, and ranks them against a task description with a pluggable
scorer.

Invalid definitions are rejected and logged; they never raise out of the
registry. Recommendation is a pure function of the registry's contents and
the input text, so identical inputs always produce identical rankings.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from conductor.agent.scoring import AgentScorer, KeywordAgentScorer
from conductor.persistence.documents import AgentDefinitionDocument
from conductor.persistence.state_store import AGENT_DEFINITION_SUFFIX

log = structlog.get_logger(__name__)

REQUIRED_PERMISSIONS = ("file_system_access", "terminal_access", "network_access")

DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "web": ("web", "frontend", "backend", "api", "http"),
    "mobile": ("mobile", "ios", "android", "app"),
    "data": ("data", "database", "sql", "analytics"),
    "security": ("security", "vulnerability", "penetration", "audit"),
    "cloud": ("cloud", "aws", "azure", "gcp", "serverless"),
    "devops": ("devops", "deployment", "ci/cd", "infrastructure"),
    "ai": ("ai", "machine learning", "neural", "model"),
    "blockchain": ("blockchain", "smart contract", "defi", "web3"),
}

_DOMAIN_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    domain: [re.compile(rf"(?<!\w){re.escape(k)}(?!\w)") for k in keywords]
    for domain, keywords in DOMAIN_KEYWORDS.items()
}

MAX_ALTERNATIVES = 3


class AgentDefinitionError(ValueError):
    """An agent definition document could not be parsed."""


def infer_domains(description: str) -> list[str]:
    """Domains whose keywords appear as whole words in ``description``."""
    lowered = description.lower()
    return [
        domain
        for domain, patterns in _DOMAIN_PATTERNS.items()
        if any(p.search(lowered) for p in patterns)
    ]


@dataclass(frozen=True)
class AgentDefinition:
    """Immutable definition of a worker agent.

    Attributes:
        name: Unique key
        description: Free text; scored for word overlap and domain inference
        role: Short role title
        capabilities: Capability tags (snake_case)
        tools: Tool identifiers the agent may invoke
        permissions: file_system_access / terminal_access / network_access flags
        can_call: Agents this one may delegate to, in preference order
        provider: Preferred provider, informational only
        model: Preferred model, informational only
        initial_prompt_template: Prompt preamble for the agent
    """

    name: str
    description: str
    role: str
    capabilities: tuple[str, ...] = ()
    tools: tuple[str, ...] = ()
    permissions: Mapping[str, bool] = field(default_factory=dict)
    can_call: tuple[str, ...] = ()
    provider: str | None = None
    model: str | None = None
    initial_prompt_template: str = ""

    def validation_error(self) -> str | None:
        """Reason this definition cannot be registered, or None if valid."""
        if not self.name.strip():
            return "name is empty"
        if not self.description.strip():
            return "description is empty"
        if not self.role.strip():
            return "role is empty"
        missing = [p for p in REQUIRED_PERMISSIONS if p not in self.permissions]
        if missing:
            return f"missing required permissions: {', '.join(missing)}"
        return None

    @classmethod
    def from_dict(cls, data: Any) -> AgentDefinition:
        """Build a definition from its JSON document.

        Raises:
            AgentDefinitionError: If the document has the wrong shape
        """
        if not isinstance(data, dict):
            raise AgentDefinitionError("agent definition must be a JSON object")
        try:
            doc = AgentDefinitionDocument.model_validate(data)
        except ValidationError as exc:
            raise AgentDefinitionError(f"invalid agent definition: {exc}") from exc
        return cls(
            name=doc.name,
            description=doc.description,
            role=doc.role,
            capabilities=tuple(doc.capabilities),
            tools=tuple(doc.tools),
            permissions=dict(doc.permissions),
            can_call=tuple(doc.can_call),
            provider=doc.provider,
            model=doc.model,
            initial_prompt_template=doc.initial_prompt_template,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "role": self.role,
            "capabilities": list(self.capabilities),
            "tools": list(self.tools),
            "permissions": dict(self.permissions),
            "can_call": list(self.can_call),
            "provider": self.provider,
            "model": self.model,
            "initial_prompt_template": self.initial_prompt_template,
        }


@dataclass(frozen=True)
class AgentRecommendation:
    agent_name: str
    confidence: float
    reasoning: str
    alternatives: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "alternatives": list(self.alternatives),
        }


@dataclass(frozen=True)
class RegistrationResult:
    accepted: bool
    reason: str | None = None


class AgentRegistry:
    """Catalog of worker agents with capability and domain indexes.

    Args:
        scorer: Strategy used by ``recommend`` (keyword heuristic by default)
        threshold: Scores at or below this are discarded
        max_confidence: Confidence ceiling
        limit: Max recommendations returned
    """

    def __init__(
        self,
        scorer: AgentScorer | None = None,
        threshold: float = 0.2,
        max_confidence: float = 0.95,
        limit: int = 5,
    ) -> None:
        self._scorer = scorer or KeywordAgentScorer()
        self._threshold = threshold
        self._max_confidence = max_confidence
        self._limit = limit
        self._agents: dict[str, AgentDefinition] = {}
        self._capability_index: dict[str, list[str]] = {}
        self._domain_index: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register(self, agent: AgentDefinition) -> RegistrationResult:
        """Validate and index ``agent``.

        Returns:
            RegistrationResult; rejected definitions are logged, never raised
        """
        reason = agent.validation_error()
        if reason is None and agent.name in self._agents:
            reason = f"agent '{agent.name}' is already registered"
        if reason is not None:
            log.warning("registry.agent_rejected", name=agent.name or "<unnamed>", reason=reason)
            return RegistrationResult(accepted=False, reason=reason)

        self._agents[agent.name] = agent
        for capability in agent.capabilities:
            self._capability_index.setdefault(capability, []).append(agent.name)
        for domain in infer_domains(agent.description):
            self._domain_index.setdefault(domain, []).append(agent.name)

        log.info(
            "registry.agent_registered",
            name=agent.name,
            role=agent.role,
            capabilities=list(agent.capabilities),
        )
        return RegistrationResult(accepted=True)

    def register_all(self, agents: Iterable[AgentDefinition]) -> int:
        return sum(1 for agent in agents if self.register(agent).accepted)

    def load_directory(self, directory: Path) -> int:
        """Register every ``*.agent.definition.json`` in ``directory``.

        Files are read in sorted order so registration order, and therefore
        tie-breaking in ``recommend``, is stable across runs. Unreadable or
        malformed files are logged and skipped.

        Returns:
            Number of agents registered
        """
        if not directory.is_dir():
            log.debug("registry.agent_directory_missing", path=str(directory))
            return 0

        loaded = 0
        for path in sorted(directory.glob(f"*{AGENT_DEFINITION_SUFFIX}")):
            try:
                with path.open("r", encoding="utf-8") as fh:
                    agent = AgentDefinition.from_dict(json.load(fh))
            except (OSError, json.JSONDecodeError, AgentDefinitionError) as exc:
                log.error("registry.agent_load_failed", path=str(path), error=str(exc))
                continue
            if self.register(agent).accepted:
                loaded += 1
        log.info("registry.directory_loaded", path=str(directory), agents=loaded)
        return loaded

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def get(self, name: str) -> AgentDefinition | None:
        return self._agents.get(name)

    def list_agents(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def get_agents_by_capability(self, capability: str) -> list[AgentDefinition]:
        return [self._agents[n] for n in self._capability_index.get(capability, [])]

    def get_agents_by_domain(self, domain: str) -> list[AgentDefinition]:
        return [self._agents[n] for n in self._domain_index.get(domain, [])]

    def alternatives(self, agent_name: str) -> list[str]:
        """Up to three other agents sharing at least one capability."""
        agent = self._agents.get(agent_name)
        if agent is None:
            return []
        found: list[str] = []
        for capability in agent.capabilities:
            for other in self._capability_index.get(capability, []):
                if other != agent_name and other not in found:
                    found.append(other)
        return found[:MAX_ALTERNATIVES]

    def collaboration_graph(self) -> dict[str, list[str]]:
        return {name: list(agent.can_call) for name, agent in self._agents.items()}

    # ------------------------------------------------------------------ #
    # Recommendation
    # ------------------------------------------------------------------ #

    def recommend(
        self,
        task_description: str,
        context: Mapping[str, Any] | None = None,
    ) -> list[AgentRecommendation]:
        """Rank agents for ``task_description``.

        Args:
            task_description: Natural-language task
            context: Optional; ``exclude_agents`` removes agents by name

        Returns:
            At most ``limit`` recommendations, highest confidence first;
            equal confidences keep registration order
        """
        excluded = set((context or {}).get("exclude_agents", ()))
        recommendations: list[AgentRecommendation] = []
        for name, agent in self._agents.items():
            if name in excluded:
                continue
            result = self._scorer.score(agent, task_description)
            if result.value <= self._threshold:
                continue
            recommendations.append(
                AgentRecommendation(
                    agent_name=name,
                    confidence=round(min(result.value, self._max_confidence), 4),
                    reasoning="; ".join(result.reasons),
                    alternatives=tuple(self.alternatives(name)),
                )
            )

        recommendations.sort(key=lambda r: r.confidence, reverse=True)
        top = recommendations[: self._limit]
        log.debug(
            "registry.recommendations",
            candidates=len(recommendations),
            returned=[r.agent_name for r in top],
        )
        return top

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def statistics(self) -> dict[str, Any]:
        by_provider: dict[str, int] = {}
        by_capability: dict[str, int] = {}
        total_tools = 0
        connections = 0
        for agent in self._agents.values():
            provider = agent.provider or "default"
            by_provider[provider] = by_provider.get(provider, 0) + 1
            for capability in agent.capabilities:
                by_capability[capability] = by_capability.get(capability, 0) + 1
            total_tools += len(agent.tools)
            connections += len(agent.can_call)

        count = len(self._agents)
        return {
            "total_agents": count,
            "agents_by_provider": by_provider,
            "agents_by_capability": by_capability,
            "average_tools_per_agent": round(total_tools / count, 2) if count else 0.0,
            "collaboration_connections": connections,
            "domains": {d: len(names) for d, names in self._domain_index.items()},
        }
