"""Health check endpoint."""

from fastapi import APIRouter, Request
import platform
import sys

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health plus render queue state."""
    settings = request.app.state.settings
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy" if scheduler is not None else "starting",
        "service": settings.app_name,
        "version": settings.app_version,
        "render_backend": scheduler.backend.describe() if scheduler else None,
        "queue_depth": scheduler.depth if scheduler else 0,
        "active_jobs": scheduler.active if scheduler else 0,
        "capacity": scheduler.capacity if scheduler else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
