"""
Request dependencies resolving the components held in app state.
"""

from fastapi import HTTPException, Request

from ..engine.scheduler import Scheduler


def get_scheduler(request: Request) -> Scheduler:
    """The running scheduler, or 503 while the engine is not wired."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Autopilot engine not available")
    return scheduler
