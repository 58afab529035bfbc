"""
Hedge position API routes (read only).
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...database.models import HedgePosition, PositionStatus
from ...engine.scheduler import Scheduler
from ..dependencies import get_scheduler
from ..schemas import PositionListResponse, PositionResponse

router = APIRouter()


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


def position_to_response(position: HedgePosition) -> PositionResponse:
    """Convert HedgePosition model to response schema."""
    return PositionResponse(
        id=position.id,
        hedge_id=position.hedge_id,
        symbol=position.symbol,
        long_exchange=position.long_exchange,
        short_exchange=position.short_exchange,
        size_eur=float(position.size_eur),
        leverage=position.leverage,
        risk_tier=position.risk_tier.value,
        is_simulated=position.is_simulated,
        status=position.status.value,
        entry_ts=position.entry_ts,
        entry_long_price=float(position.entry_long_price),
        entry_short_price=float(position.entry_short_price),
        entry_funding_spread_8h=float(position.entry_funding_spread_8h),
        entry_score=position.entry_score,
        current_long_price=_float(position.long_mark.to_column()),
        current_short_price=_float(position.short_mark.to_column()),
        funding_collected_eur=float(position.funding_collected_eur),
        intervals_collected=position.intervals_collected,
        unrealized_pnl_eur=float(position.unrealized_pnl_eur),
        unrealized_pnl_percent=float(position.unrealized_pnl_percent),
        pnl_drift=float(position.pnl_drift),
        exit_ts=position.exit_ts,
        exit_long_price=_float(position.exit_long_price),
        exit_short_price=_float(position.exit_short_price),
        realized_pnl_eur=_float(position.realized_pnl_eur),
        exit_reason=position.exit_reason,
    )


@router.get("", response_model=PositionListResponse)
async def get_positions(
    status: str = Query("all", description="Filter by status: open, closed, stopped, all"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """
    Get positions with optional filtering.

    - **status**: Filter by position status (open, closed, stopped, all)
    - **limit**: Maximum number of positions to return
    - **offset**: Offset for pagination
    """
    if status == "all":
        status_filter = None
    else:
        try:
            status_filter = PositionStatus(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status: {status}")

    positions = await scheduler.store.list_positions(status_filter, limit=limit, offset=offset)
    return PositionListResponse(
        positions=[position_to_response(p) for p in positions],
        total=len(positions),
    )


@router.get("/{position_id}", response_model=PositionResponse)
async def get_position(position_id: str, scheduler: Scheduler = Depends(get_scheduler)):
    """Get a specific position by ID."""
    position = await scheduler.store.get_position(position_id)
    if not position:
        raise HTTPException(status_code=404, detail="Position not found")
    return position_to_response(position)
