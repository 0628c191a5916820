"""Health check endpoint."""

from fastapi import APIRouter

from safety_engine.core.ws_manager import ws_manager

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    """Return API health status."""
    return {
        "status": "ok",
        "ws_connections": ws_manager.total_connections,
        "ws_dashboards": ws_manager.dashboard_count,
    }
