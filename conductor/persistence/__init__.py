"""JSON document persistence under the project's state directory."""

from __future__ import annotations

from conductor.persistence.state_store import StateStore

__all__ = ["StateStore"]
