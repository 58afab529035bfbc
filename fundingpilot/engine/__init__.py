"""Autopilot engine core module."""

from .opportunity_engine import OpportunityEngine
from .risk_manager import RiskManager
from .hedge_executor import HedgeExecutor, HedgeExecutionResult, HedgeCloseResult
from .position_manager import PositionManager
from .commands import CommandQueue, CommandType, ControlCommand
from .scheduler import Scheduler, CycleReport, CycleStatus

__all__ = [
    "OpportunityEngine",
    "RiskManager",
    "HedgeExecutor",
    "HedgeExecutionResult",
    "HedgeCloseResult",
    "PositionManager",
    "CommandQueue",
    "CommandType",
    "ControlCommand",
    "Scheduler",
    "CycleReport",
    "CycleStatus",
]
