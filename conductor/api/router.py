"""Main API router - aggregates all sub-routers.

All routes are versioned under /api/v1 except the health check.
"""

from __future__ import annotations

from fastapi import APIRouter

from conductor.api import agents, budgets, health, messages, orchestrations

# Public router
public_router = APIRouter()
public_router.include_router(health.router)

# Versioned API router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(orchestrations.router)
api_v1_router.include_router(messages.router)
api_v1_router.include_router(budgets.router)
api_v1_router.include_router(agents.router)
