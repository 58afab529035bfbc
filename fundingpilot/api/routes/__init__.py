"""API routes module."""

from .control import router as control_router
from .health import router as health_router
from .positions import router as positions_router
from .status import router as status_router

__all__ = [
    "control_router",
    "health_router",
    "positions_router",
    "status_router",
]
