"""
Autopilot control API routes.

Every route queues a control command and returns 202; the scheduler
applies it at the start of its next cycle.
"""

from fastapi import APIRouter, Depends, HTTPException

from ...engine.commands import ControlCommand
from ...engine.scheduler import Scheduler
from ...utils.logging import get_logger
from ..dependencies import get_scheduler
from ..schemas import (
    ClosePositionRequest,
    CommandAcceptedResponse,
    SetModeRequest,
    SetRunningRequest,
    StopAllRequest,
)

logger = get_logger(__name__)

router = APIRouter()


def _accepted(scheduler: Scheduler, command: ControlCommand) -> CommandAcceptedResponse:
    scheduler.submit(command)
    return CommandAcceptedResponse(
        command_id=command.id,
        type=command.type.value,
        pending_commands=len(scheduler.commands),
    )


@router.post("/mode", status_code=202, response_model=CommandAcceptedResponse)
async def set_mode(request: SetModeRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """
    Switch the operating mode.

    - **paper**: synthetic fills
    - **live**: orders through the execution port
    - **off**: cycles are skipped
    """
    return _accepted(scheduler, ControlCommand.set_mode(request.mode))


@router.post("/running", status_code=202, response_model=CommandAcceptedResponse)
async def set_running(request: SetRunningRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Start or stop the autopilot. Open positions are left as they are."""
    return _accepted(scheduler, ControlCommand.set_running(request.running))


@router.post("/kill-switch/reset", status_code=202, response_model=CommandAcceptedResponse)
async def reset_kill_switch(scheduler: Scheduler = Depends(get_scheduler)):
    """
    Reset the kill switch.

    The autopilot stays stopped until it is started again.
    """
    return _accepted(scheduler, ControlCommand.reset_kill_switch())


@router.post("/stop-all", status_code=202, response_model=CommandAcceptedResponse)
async def stop_all(request: StopAllRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """
    Stop the autopilot and close every open position.

    **Positions are closed at market on the next cycle.**
    """
    if not request.confirm:
        raise HTTPException(status_code=400, detail="Must confirm stop-all")

    logger.warning("stop_all_requested")
    return _accepted(scheduler, ControlCommand.stop_all())


@router.post("/positions/{position_id}/close", status_code=202, response_model=CommandAcceptedResponse)
async def close_position(
    position_id: str,
    request: ClosePositionRequest = None,
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Close a single position on the next cycle."""
    position = await scheduler.store.get_position(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    if not position.is_open:
        raise HTTPException(status_code=409, detail=f"Position is {position.status.value}")

    reason = request.reason if request else None
    return _accepted(scheduler, ControlCommand.close_position(position_id, reason))
