"""FastAPI dependencies shared by the route modules."""

from __future__ import annotations

from fastapi import Request

from conductor.container import Container


def get_container(request: Request) -> Container:
    """Container built in the app lifespan; override in tests if needed."""
    return request.app.state.container
