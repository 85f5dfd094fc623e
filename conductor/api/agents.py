"""GET /api/v1/agents - registered agents, collaboration graph and statistics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from conductor.api.deps import get_container
from conductor.container import Container

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", summary="List registered agents")
async def list_agents(
    capability: str | None = None,
    domain: str | None = None,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    registry = container.registry
    if capability is not None:
        agents = registry.get_agents_by_capability(capability)
    elif domain is not None:
        agents = registry.get_agents_by_domain(domain)
    else:
        agents = registry.list_agents()
    return {
        "agents": [agent.to_dict() for agent in agents],
        "collaboration_graph": registry.collaboration_graph(),
        "statistics": registry.statistics(),
    }
