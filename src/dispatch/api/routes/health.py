"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...services.engine import DispatchEngine, get_engine

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/engine", status_code=status.HTTP_200_OK)
def health_engine(engine: DispatchEngine = Depends(get_engine)) -> dict:
    return {
        "repository": type(engine.repository).__name__,
        "scheduler_running": engine.scheduler.running,
        "notifier": type(engine.notifier).__name__,
    }
