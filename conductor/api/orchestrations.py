"""Orchestration and recommendation endpoints.

POST /api/v1/orchestrations    - Plan and execute a task, return the report
POST /api/v1/recommendations   - Rank agents for a task (read-only)
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from conductor.api.deps import get_container
from conductor.container import Container
from conductor.model_router.requests import Priority
from conductor.orchestration.errors import NoSuitableAgentError
from conductor.orchestration.models import OrchestrationRequest

log = structlog.get_logger(__name__)

router = APIRouter(tags=["orchestration"])


class OrchestrationBody(BaseModel):
    task_description: str = Field(..., min_length=1, max_length=20_000)
    priority: Priority = Priority.MEDIUM
    max_agents: int | None = Field(default=None, ge=1)
    requires_collaboration: bool = True
    context: dict[str, Any] = Field(default_factory=dict)


class RecommendationBody(BaseModel):
    task_description: str = Field(..., min_length=1, max_length=20_000)
    context: dict[str, Any] = Field(default_factory=dict)


class RecommendationItem(BaseModel):
    agent_name: str
    confidence: float
    reasoning: str
    alternatives: list[str]


class RecommendationsResponse(BaseModel):
    recommendations: list[RecommendationItem]


@router.post("/orchestrations", summary="Plan and execute a task")
async def create_orchestration(
    body: OrchestrationBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    request = OrchestrationRequest(
        task_description=body.task_description,
        priority=body.priority,
        max_agents=body.max_agents,
        requires_collaboration=body.requires_collaboration,
        context=body.context,
    )
    try:
        report = await container.orchestrator.orchestrate(request)
    except NoSuitableAgentError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return report.to_dict()


@router.post(
    "/recommendations",
    response_model=RecommendationsResponse,
    summary="Rank agents for a task",
)
async def recommend_agents(
    body: RecommendationBody,
    container: Container = Depends(get_container),
) -> RecommendationsResponse:
    recommendations = container.orchestrator.recommend_agent_for_task(
        body.task_description, body.context
    )
    return RecommendationsResponse(
        recommendations=[RecommendationItem(**r.to_dict()) for r in recommendations]
    )
