"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..types import AutopilotMode


# ==================== Position Schemas ====================

class PositionResponse(BaseModel):
    """Hedge position response model."""
    id: str
    hedge_id: Optional[str]
    symbol: str
    long_exchange: str
    short_exchange: str
    size_eur: float
    leverage: int
    risk_tier: str
    is_simulated: bool
    status: str
    entry_ts: datetime
    entry_long_price: float
    entry_short_price: float
    entry_funding_spread_8h: float
    entry_score: int
    current_long_price: Optional[float]  # None until first observed
    current_short_price: Optional[float]
    funding_collected_eur: float
    intervals_collected: int
    unrealized_pnl_eur: float
    unrealized_pnl_percent: float
    pnl_drift: float
    exit_ts: Optional[datetime] = None
    exit_long_price: Optional[float] = None
    exit_short_price: Optional[float] = None
    realized_pnl_eur: Optional[float] = None
    exit_reason: Optional[str] = None

    class Config:
        from_attributes = True


class PositionListResponse(BaseModel):
    """List of positions."""
    positions: List[PositionResponse]
    total: int


# ==================== Opportunity Schemas ====================

class OpportunityResponse(BaseModel):
    """Ranked opportunity from the last scan."""
    symbol: str
    long_exchange: str
    short_exchange: str
    funding_spread_8h: float
    gross_profit_bps: float
    net_profit_bps: float
    net_profit_eur: float
    apr: float
    score: int
    risk_tier: str
    is_valid: bool
    reasons: List[str] = []


class OpportunitiesResponse(BaseModel):
    """Result of the last scan."""
    opportunities: List[OpportunityResponse]
    scanned_at: Optional[datetime]
    total: int


# ==================== Status Schemas ====================

class StatusResponse(BaseModel):
    """Autopilot status for polling clients."""
    risk_state: Dict[str, Any]
    risk: Dict[str, Any]
    open_positions: int
    deployed_eur: float
    last_cycle: Optional[Dict[str, Any]]
    cycle_sequence: int
    scheduler_running: bool
    pending_commands: int
    open_circuits: List[str]
    market_data_age_seconds: Optional[float]


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str  # "healthy", "degraded", "unhealthy"
    database: bool
    scheduler_running: bool
    last_cycle_at: Optional[datetime]
    timestamp: datetime


# ==================== Control Schemas ====================

class SetModeRequest(BaseModel):
    """Switch between off, paper and live."""
    mode: AutopilotMode


class SetRunningRequest(BaseModel):
    """Start or stop the autopilot."""
    running: bool


class StopAllRequest(BaseModel):
    """Close every open position and stop."""
    confirm: bool = Field(..., description="Must be true to stop everything")


class ClosePositionRequest(BaseModel):
    """Close position request."""
    reason: Optional[str] = Field(None, description="Optional reason for closing")


class CommandAcceptedResponse(BaseModel):
    """A control command queued for the next cycle."""
    accepted: bool = True
    command_id: str
    type: str
    pending_commands: int
    message: str = "Command queued for the next cycle"
