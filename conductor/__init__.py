"""conductor - multi-agent task orchestration with cost-aware LLM routing."""

__version__ = "0.1.0"
