"""Prompt optimizer - pure text pipeline that shrinks prompts before dispatch.

Stages, in order:
1. redundancy removal: duplicate sentences and lead-in filler phrases
2. compression: verbose stock phrases replaced by short equivalents
3. agent-specific literal substitutions
4. task-type literal substitutions
5. smart truncation against the task type's token ceiling

Every stage is a literal string transformation; nothing here interprets the
prompt. The pipeline is deterministic, so the same (prompt, task type,
agent) always yields the same optimised text and therefore the same cache
key.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from conductor.model_router.providers import CHARS_PER_TOKEN, estimate_tokens

log = structlog.get_logger(__name__)

# Reference price used to express savings in dollars before a provider is chosen
REFERENCE_COST_PER_TOKEN = 0.00003

DEFAULT_TOKEN_CEILING = 2000

TOKEN_CEILINGS: dict[str, int] = {
    "simple_task": 1000,
    "code_generation": 2000,
    "code_review": 3000,
    "debugging": 2500,
    "documentation": 1500,
    "complex_analysis": 4000,
}

REDUNDANT_PHRASES = (
    "please note that",
    "it should be noted that",
    "it is important to",
    "as mentioned before",
    "as we discussed",
    "in other words",
)

COMPRESSIONS: dict[str, str] = {
    "implement a function that": "implement function to",
    "create a new file that contains": "create file with",
    "generate code that will": "generate code to",
    "analyze the provided code and": "analyze code and",
    "perform a comprehensive review of": "review",
    "execute the following steps in order": "execute steps",
    "make sure to include proper error handling": "include error handling",
    "ensure that the code follows best practices": "follow best practices",
    "provide detailed documentation for": "document",
    "create comprehensive test cases for": "test",
}

AGENT_SUBSTITUTIONS: dict[str, tuple[tuple[str, str], ...]] = {
    "DeveloperAgent": (
        ("write code that", "code:"),
        ("implement functionality for", "implement:"),
    ),
    "TesterAgent": (
        ("create test cases for", "test:"),
        ("verify that", "verify:"),
    ),
    "SecurityAgent": (
        ("perform security analysis on", "scan:"),
        ("check for vulnerabilities in", "audit:"),
    ),
    "PerformanceAgent": (
        ("optimize the performance of", "optimize:"),
        ("analyze bottlenecks in", "profile:"),
    ),
    "DatabaseAgent": (
        ("design database schema for", "schema:"),
        ("optimize query", "optimize:"),
    ),
    "APIAgent": (
        ("create REST API for", "API:"),
        ("design endpoints for", "endpoints:"),
    ),
}

TASK_SUBSTITUTIONS: dict[str, tuple[tuple[str, str], ...]] = {
    "code_generation": (
        ("generate code that implements", "implement"),
        ("create a function that", "function:"),
    ),
    "code_review": (
        ("review the following code and provide feedback", "review:"),
        ("analyze code quality", "quality:"),
    ),
    "debugging": (
        ("debug the following error", "debug:"),
        ("find and fix the issue", "fix:"),
    ),
    "optimization": (
        ("optimize the performance", "optimize:"),
        ("improve efficiency", "improve:"),
    ),
    "documentation": (
        ("create documentation for", "document:"),
        ("write comprehensive docs", "docs:"),
    ),
}

IMPORTANT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "code_generation": ("implement", "create", "function", "class", "method"),
    "debugging": ("error", "bug", "fix", "issue", "problem"),
    "optimization": ("performance", "speed", "memory", "optimize"),
    "security": ("security", "vulnerability", "auth", "permission"),
    "testing": ("test", "verify", "validate", "check"),
}

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_WHITESPACE_RE = re.compile(r"\s+")
_REDUNDANT_RE = [re.compile(re.escape(p), re.IGNORECASE) for p in REDUNDANT_PHRASES]
_COMPRESSION_RE = [
    (re.compile(re.escape(verbose), re.IGNORECASE), concise)
    for verbose, concise in COMPRESSIONS.items()
]


def token_ceiling(task_type: str) -> int:
    return TOKEN_CEILINGS.get(task_type, DEFAULT_TOKEN_CEILING)


def split_sentences(text: str) -> list[str]:
    """Split into sentences, keeping each sentence's terminator."""
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip(" \t\n.!?")]


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _fit_prefix(sentence: str, max_chars: int) -> str:
    """Longest prefix of ``sentence`` within ``max_chars``, cut at a word boundary if possible."""
    if max_chars <= 0:
        return ""
    head = sentence[:max_chars]
    if len(head) < len(sentence) and not sentence[max_chars].isspace() and " " in head:
        head = head.rsplit(" ", 1)[0]
    return head.rstrip()


@dataclass
class CostOptimizationResult:
    """What optimisation saved on one prompt.

    Costs are expressed at ``REFERENCE_COST_PER_TOKEN`` because the provider
    has not been chosen yet when the optimiser runs.
    """

    original_tokens: int
    optimized_tokens: int
    original_cost: float
    optimized_cost: float
    tokens_saved: int
    savings_percentage: float
    speed_improvement_ms: int
    strategies_used: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OptimizedPrompt:
    text: str
    result: CostOptimizationResult


class PromptOptimizer:
    """Runs the optimisation pipeline for a (prompt, task type, agent)."""

    def optimize(self, prompt: str, task_type: str, agent_name: str) -> OptimizedPrompt:
        """Optimise ``prompt`` for ``agent_name`` working on ``task_type``.

        Returns:
            The optimised text together with a CostOptimizationResult that
            names every stage which actually changed the text.
        """
        strategies: list[str] = []
        text = prompt

        stages = (
            ("redundancy_removal", self.remove_redundancy),
            ("compression", self.compress),
            ("agent_substitution", lambda t: self.apply_agent_substitutions(t, agent_name)),
            ("task_substitution", lambda t: self.apply_task_substitutions(t, task_type)),
            ("smart_truncation", lambda t: self.truncate(t, task_type)),
        )
        for name, stage in stages:
            updated = stage(text)
            if updated != text:
                strategies.append(name)
                text = updated

        original_tokens = estimate_tokens(prompt)
        optimized_tokens = estimate_tokens(text)
        tokens_saved = original_tokens - optimized_tokens
        result = CostOptimizationResult(
            original_tokens=original_tokens,
            optimized_tokens=optimized_tokens,
            original_cost=original_tokens * REFERENCE_COST_PER_TOKEN,
            optimized_cost=optimized_tokens * REFERENCE_COST_PER_TOKEN,
            tokens_saved=tokens_saved,
            savings_percentage=(tokens_saved / original_tokens * 100.0) if original_tokens else 0.0,
            # Roughly one millisecond per token not sent
            speed_improvement_ms=max(tokens_saved, 0),
            strategies_used=strategies,
        )

        log.debug(
            "optimizer.prompt_optimized",
            agent_name=agent_name,
            task_type=task_type,
            original_chars=len(prompt),
            optimized_chars=len(text),
            strategies=strategies,
        )
        return OptimizedPrompt(text=text, result=result)

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #

    @staticmethod
    def remove_redundancy(text: str) -> str:
        seen: set[str] = set()
        unique: list[str] = []
        for sentence in split_sentences(text):
            key = _collapse(sentence.rstrip(".!?")).lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(sentence)
        result = " ".join(unique)
        for pattern in _REDUNDANT_RE:
            result = pattern.sub("", result)
        return _collapse(result)

    @staticmethod
    def compress(text: str) -> str:
        for pattern, concise in _COMPRESSION_RE:
            text = pattern.sub(concise, text)
        return text

    @staticmethod
    def apply_agent_substitutions(text: str, agent_name: str) -> str:
        for verbose, concise in AGENT_SUBSTITUTIONS.get(agent_name, ()):
            text = text.replace(verbose, concise)
        return text

    @staticmethod
    def apply_task_substitutions(text: str, task_type: str) -> str:
        for verbose, concise in TASK_SUBSTITUTIONS.get(task_type, ()):
            text = text.replace(verbose, concise)
        return text

    @staticmethod
    def is_important(sentence: str, task_type: str) -> bool:
        lowered = sentence.lower()
        return any(k in lowered for k in IMPORTANT_KEYWORDS.get(task_type, ()))

    def truncate(self, text: str, task_type: str) -> str:
        """Fit ``text`` under the task type's token ceiling.

        Important sentences are kept first, then the remaining sentences in
        their original order. The first sentence that would overflow
        contributes the words that still fit and ends the fill. If the
        important sentences alone overflow, the result is hard-cut.
        """
        ceiling = token_ceiling(task_type)
        if estimate_tokens(text) <= ceiling:
            return text

        max_chars = ceiling * CHARS_PER_TOKEN
        sentences = split_sentences(text)
        important = [s for s in sentences if self.is_important(s, task_type)]
        rest = [s for s in sentences if not self.is_important(s, task_type)]

        truncated = " ".join(important)
        for sentence in rest:
            candidate = f"{truncated} {sentence}" if truncated else sentence
            if estimate_tokens(candidate) > ceiling:
                room = max_chars - len(truncated) - (1 if truncated else 0)
                head = _fit_prefix(sentence, room)
                if head:
                    truncated = f"{truncated} {head}" if truncated else head
                break
            truncated = candidate

        if len(truncated) > max_chars:
            truncated = truncated[:max_chars].rstrip()
        return truncated
