"""
Health check API routes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ...utils.logging import get_logger
from ..schemas import HealthCheckResponse

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns the health status of the database and the scheduler.
    """
    db = getattr(request.app.state, "db", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    db_healthy = db is not None and db.is_initialized and await db.ping()
    scheduler_running = scheduler is not None and scheduler.is_running

    last_cycle_at = None
    if scheduler is not None and scheduler.last_report is not None:
        last_cycle_at = scheduler.last_report.finished_at

    # Determine overall status
    if db_healthy and scheduler_running:
        status = "healthy"
    elif db_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthCheckResponse(
        status=status,
        database=db_healthy,
        scheduler_running=scheduler_running,
        last_cycle_at=last_cycle_at,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Ready once the database is initialized and the engine is wired.
    """
    db = getattr(request.app.state, "db", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    return {"ready": db is not None and db.is_initialized and scheduler is not None}


@router.get("/live")
async def liveness_check():
    """
    Liveness check endpoint.

    Returns 200 if the service is alive.
    """
    return {"alive": True}
