"""
Base audit sink interface.

The engine records every decision it takes through an audit sink.
Logging is fire-and-forget: a sink must never raise into the control
loop and must never block it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..types import AuditLevel


def to_jsonable(value: Any) -> Any:
    """Convert Decimal, datetime and Enum values so details can be stored as JSON."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class AuditSink(ABC):
    """
    Abstract base class for audit sinks.

    All audit implementations must inherit from this class.
    """

    @abstractmethod
    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record an audit event.

        Args:
            level: Event severity
            action: Upper-case action name (e.g. HEDGE_EXECUTED)
            entity_type: Kind of entity affected (position, hedge, risk_state)
            entity_id: Identifier of the affected entity
            details: Free-form JSON-serializable context
        """
        pass

    def info(self, action: str, **kwargs) -> None:
        """Record an INFO level event."""
        self.log(AuditLevel.INFO, action, **kwargs)

    def warn(self, action: str, **kwargs) -> None:
        """Record a WARN level event."""
        self.log(AuditLevel.WARN, action, **kwargs)

    def error(self, action: str, **kwargs) -> None:
        """Record an ERROR level event."""
        self.log(AuditLevel.ERROR, action, **kwargs)

    def action(self, action: str, **kwargs) -> None:
        """Record an operator or trading action."""
        self.log(AuditLevel.ACTION, action, **kwargs)

    async def start(self) -> None:
        """Start background work, if any."""
        pass

    async def flush(self) -> None:
        """Write out anything buffered."""
        pass

    async def close(self) -> None:
        """Flush and release resources."""
        await self.flush()


class NullAuditSink(AuditSink):
    """
    Audit sink that discards everything.

    Used in tests and when auditing is disabled.
    """

    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass
