"""
Autopilot status API routes.

Clients poll these endpoints; the cycle sequence and the changed flag
of the last cycle report tell them when a refresh is worthwhile.
"""

from fastapi import APIRouter, Depends

from ...engine.risk_manager import deployed_eur
from ...engine.scheduler import Scheduler
from ..dependencies import get_scheduler
from ..schemas import OpportunitiesResponse, OpportunityResponse, StatusResponse

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
async def get_status(scheduler: Scheduler = Depends(get_scheduler)):
    """
    Get the autopilot status.

    Returns the risk state snapshot, the derived risk level, the last
    cycle report and the command queue depth.
    """
    snapshot = await scheduler.store.get_risk_state()
    open_positions = await scheduler.store.get_open_positions()
    last_report = scheduler.last_report

    return StatusResponse(
        risk_state=snapshot.to_dict(),
        risk=scheduler.risk_manager.get_risk_status(snapshot),
        open_positions=len(open_positions),
        deployed_eur=float(deployed_eur(open_positions)),
        last_cycle=last_report.to_dict() if last_report else None,
        cycle_sequence=scheduler.sequence,
        scheduler_running=scheduler.is_running,
        pending_commands=len(scheduler.commands),
        open_circuits=scheduler.executor.port.open_circuits,
        market_data_age_seconds=scheduler.opportunity_engine.newest_metric_age_seconds(),
    )


@router.get("/opportunities", response_model=OpportunitiesResponse)
async def get_opportunities(scheduler: Scheduler = Depends(get_scheduler)):
    """
    Get the ranked opportunities from the last scan.

    Uses the same cost model as the engine, so the numbers match what
    the autopilot acted on.
    """
    engine = scheduler.opportunity_engine
    opportunities = [OpportunityResponse(**o.to_dict()) for o in engine.last_opportunities]
    return OpportunitiesResponse(
        opportunities=opportunities,
        scanned_at=engine.last_scan_at,
        total=len(opportunities),
    )
