"""Built-in agent definitions.

Used when the project has no ``.conductor/agents`` directory, and written
out by ``conductor init-agents`` as a starting point for customisation.
"""

from __future__ import annotations

from conductor.agent.registry import AgentDefinition

_ALL_ACCESS = {"file_system_access": True, "terminal_access": True, "network_access": True}

DEFAULT_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        name="DeveloperAgent",
        description=(
            "Senior software developer that can analyze requirements, implement "
            "features, write and refactor code, test and fix bugs in the application module"
        ),
        role="developer",
        capabilities=("code_generation", "code_analysis", "refactoring", "debugging"),
        tools=("code.generate", "code.modify", "debug.intelligent", "dependency.add"),
        permissions=_ALL_ACCESS,
        can_call=("TesterAgent", "SecurityAgent", "DocumentationAgent"),
        initial_prompt_template="You are a senior software developer.",
    ),
    AgentDefinition(
        name="TesterAgent",
        description=(
            "Quality assurance specialist that designs and runs test suites, "
            "validates behaviour and reports regressions in the module under test"
        ),
        role="qa",
        capabilities=("testing", "test_generation", "quality_assurance"),
        tools=("qa.runChecks", "code.generate"),
        permissions={"file_system_access": True, "terminal_access": True, "network_access": False},
        can_call=("DeveloperAgent",),
        initial_prompt_template="You are a meticulous QA engineer.",
    ),
    AgentDefinition(
        name="SecurityAgent",
        description=(
            "Security auditor that scans code for vulnerability patterns, reviews "
            "authentication and permission checks and audits the payment flows of each module"
        ),
        role="security",
        capabilities=("security_audit", "vulnerability_scanning", "code_review"),
        tools=("security.scanFile",),
        permissions=_ALL_ACCESS,
        can_call=("DeveloperAgent",),
        initial_prompt_template="You are an application security auditor.",
    ),
    AgentDefinition(
        name="PerformanceAgent",
        description=(
            "Performance engineer that profiles the application, finds bottlenecks "
            "and optimizes memory usage and speed"
        ),
        role="performance",
        capabilities=("performance_optimization", "profiling"),
        tools=("code.modify", "debug.intelligent"),
        permissions={"file_system_access": True, "terminal_access": True, "network_access": False},
        can_call=("DeveloperAgent",),
        initial_prompt_template="You are a performance engineer.",
    ),
    AgentDefinition(
        name="DocumentationAgent",
        description=(
            "Technical writer that writes and updates documentation, api references "
            "and usage guides"
        ),
        role="writer",
        capabilities=("documentation", "api_documentation"),
        tools=("docs.generate",),
        permissions={"file_system_access": True, "terminal_access": False, "network_access": False},
        can_call=(),
        initial_prompt_template="You are a technical writer.",
    ),
    AgentDefinition(
        name="TechLeadAgent",
        description=(
            "Technical lead that plans work, reviews architecture and design "
            "decisions and coordinates collaboration between agents"
        ),
        role="tech_lead",
        capabilities=("architecture", "task_planning", "code_review"),
        tools=("task.planning", "pair.programming", "design.specification"),
        permissions=_ALL_ACCESS,
        can_call=("DeveloperAgent", "TesterAgent", "SecurityAgent", "PerformanceAgent"),
        initial_prompt_template="You are a pragmatic technical lead.",
    ),
)
