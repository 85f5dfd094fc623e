"""Routing endpoints.

POST /api/v1/messages        - Route one request through cache, optimiser and selector
POST /api/v1/messages/batch  - Route many requests, grouped and rate-limited per provider
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from conductor.api.deps import get_container
from conductor.container import Container
from conductor.model_router.dispatch import ProviderError
from conductor.model_router.requests import Priority, RouteRequest

router = APIRouter(prefix="/messages", tags=["routing"])


class MessageBody(BaseModel):
    prompt: str = Field(..., min_length=1)
    agent_name: str = "unknown"
    task_type: str = "general"
    priority: Priority = Priority.MEDIUM
    cost_limit: float | None = Field(default=None, ge=0)
    speed_priority: bool = False
    cache_ttl_seconds: float | None = Field(default=None, gt=0)
    max_response_time_ms: int | None = Field(default=None, gt=0)
    task_id: str | None = None

    def to_route_request(self) -> RouteRequest:
        return RouteRequest(**self.model_dump(exclude={"task_id"}))


class BatchBody(BaseModel):
    requests: list[MessageBody] = Field(..., min_length=1, max_length=100)


@router.post("", summary="Route a single request")
async def send_message(
    body: MessageBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    task_id = body.task_id or f"task_{uuid.uuid4().hex[:12]}"
    try:
        response = await container.router.send_message(task_id, body.to_route_request())
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {"task_id": task_id, **response.to_dict()}


@router.post("/batch", summary="Route a batch of requests")
async def send_batch(
    body: BatchBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    responses = await container.router.batch_optimized_requests(
        [item.to_route_request() for item in body.requests]
    )
    return {"responses": [r.to_dict() for r in responses]}
