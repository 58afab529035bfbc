"""
Exception hierarchy for the autopilot.

Data problems and threshold rejections are not exceptions; they are
filtered or reported as reasons. These classes cover the failures that
cross component boundaries.
"""


class AutopilotError(Exception):
    """Base exception for all autopilot errors."""
    pass


class ConfigurationError(AutopilotError):
    """Raised when configuration is inconsistent or incomplete."""
    pass


class StoreError(AutopilotError):
    """Raised when the state store cannot be read or written."""
    pass


class PositionRecordError(StoreError):
    """Raised when an executed hedge could not be stored as a position."""

    def __init__(self, message: str, hedge_id: str = ""):
        super().__init__(message)
        self.hedge_id = hedge_id


class PositionNotFoundError(AutopilotError):
    """Raised when a position id does not exist in the store."""

    def __init__(self, position_id: str):
        super().__init__(f"Position not found: {position_id}")
        self.position_id = position_id


class ExecutionError(AutopilotError):
    """Raised when an order leg cannot be submitted or closed."""

    def __init__(self, message: str, exchange: str = "", symbol: str = ""):
        super().__init__(message)
        self.exchange = exchange
        self.symbol = symbol


class OrderTimeoutError(ExecutionError):
    """Raised when an order leg does not complete within its timeout."""
    pass


class CircuitBreakerOpenError(ExecutionError):
    """Raised when a venue's circuit breaker is open after consecutive failures."""
    pass
