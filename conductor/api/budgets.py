"""Budget administration and analytics endpoints.

PUT /api/v1/budgets/{identifier}          - Set a daily USD budget
PUT /api/v1/speed-thresholds/{identifier} - Set a max provider latency
GET /api/v1/metrics                       - Real-time cost and usage metrics
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from conductor.api.deps import get_container
from conductor.container import Container

log = structlog.get_logger(__name__)

router = APIRouter(tags=["budgets"])


class BudgetBody(BaseModel):
    daily_budget: float = Field(..., gt=0)


class SpeedThresholdBody(BaseModel):
    max_response_time_ms: int = Field(..., gt=0)


@router.put("/budgets/{identifier}", summary="Set the daily budget for an agent or task type")
async def put_budget(
    identifier: str,
    body: BudgetBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        await container.router.set_cost_budget(identifier, body.daily_budget)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    log.info("api.budget_updated", identifier=identifier, daily_budget=body.daily_budget)
    state = container.router.budget.get_state(identifier)
    if state is None:
        return {"identifier": identifier, "daily_budget": body.daily_budget}
    return state.to_dict()


@router.put("/speed-thresholds/{identifier}", summary="Set the latency ceiling for a task type")
async def put_speed_threshold(
    identifier: str,
    body: SpeedThresholdBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        await container.router.set_speed_threshold(identifier, body.max_response_time_ms)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return {"identifier": identifier, "max_response_time_ms": body.max_response_time_ms}


@router.get("/metrics", summary="Real-time cost and usage metrics")
async def get_metrics(container: Container = Depends(get_container)) -> dict[str, Any]:
    return container.router.get_real_time_metrics()
