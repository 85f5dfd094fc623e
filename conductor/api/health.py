"""Health check endpoint. Public, no auth."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from conductor import __version__
from conductor.api.deps import get_container
from conductor.container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(container: Container = Depends(get_container)) -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "agents": len(container.registry),
        "timestamp": datetime.now(UTC).isoformat(),
    }
