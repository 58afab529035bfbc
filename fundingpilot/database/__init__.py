"""Database module for state persistence."""

from .connection import DatabaseSessionManager
from .models import (
    Base,
    HedgePosition,
    RiskStateRecord,
    AuditLogEntry,
    MarketMetricRecord,
    PositionStatus,
    RISK_STATE_ID,
)
from .repository import (
    HedgePositionRepository,
    RiskStateRepository,
    AuditLogRepository,
    MarketMetricRepository,
)

__all__ = [
    # Connection management
    "DatabaseSessionManager",
    # Models
    "Base",
    "HedgePosition",
    "RiskStateRecord",
    "AuditLogEntry",
    "MarketMetricRecord",
    "PositionStatus",
    "RISK_STATE_ID",
    # Repositories
    "HedgePositionRepository",
    "RiskStateRepository",
    "AuditLogRepository",
    "MarketMetricRepository",
]
