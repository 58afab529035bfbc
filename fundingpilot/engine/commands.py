"""
Operator control commands.

Commands are queued by any caller (API, CLI) and applied by the
scheduler at the start of its next cycle, never in the middle of one.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Iterable, List, Optional

from ..database.models import generate_uuid, utc_now
from ..types import AutopilotMode
from ..utils.logging import get_logger

logger = get_logger(__name__)

MANUAL_CLOSE_REASON = "Manual close"
STOP_ALL_REASON = "Manual STOP ALL"


class CommandType(str, Enum):
    """Kinds of operator command."""
    SET_MODE = "set_mode"
    SET_RUNNING = "set_running"
    RESET_KILL_SWITCH = "reset_kill_switch"
    STOP_ALL = "stop_all"
    CLOSE_POSITION = "close_position"


@dataclass(frozen=True)
class ControlCommand:
    """A queued operator command."""
    type: CommandType
    mode: Optional[AutopilotMode] = None
    running: Optional[bool] = None
    position_id: Optional[str] = None
    reason: Optional[str] = None
    id: str = field(default_factory=generate_uuid)
    submitted_at: datetime = field(default_factory=utc_now)

    @classmethod
    def set_mode(cls, mode: AutopilotMode) -> "ControlCommand":
        return cls(type=CommandType.SET_MODE, mode=AutopilotMode(mode))

    @classmethod
    def set_running(cls, running: bool) -> "ControlCommand":
        return cls(type=CommandType.SET_RUNNING, running=running)

    @classmethod
    def reset_kill_switch(cls) -> "ControlCommand":
        return cls(type=CommandType.RESET_KILL_SWITCH)

    @classmethod
    def stop_all(cls) -> "ControlCommand":
        return cls(type=CommandType.STOP_ALL, reason=STOP_ALL_REASON)

    @classmethod
    def close_position(cls, position_id: str, reason: Optional[str] = None) -> "ControlCommand":
        return cls(
            type=CommandType.CLOSE_POSITION,
            position_id=position_id,
            reason=reason or MANUAL_CLOSE_REASON,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "mode": self.mode.value if self.mode else None,
            "running": self.running,
            "position_id": self.position_id,
            "reason": self.reason,
            "submitted_at": self.submitted_at.isoformat(),
        }


class CommandQueue:
    """
    FIFO of pending commands.

    The event loop is single-threaded, so submit and drain never
    interleave mid-operation.
    """

    def __init__(self):
        self._pending: Deque[ControlCommand] = deque()

    def submit(self, command: ControlCommand) -> ControlCommand:
        """Queue a command for the next cycle."""
        self._pending.append(command)
        logger.info("command_queued", command_id=command.id, type=command.type.value)
        return command

    def drain(self) -> List[ControlCommand]:
        """Take every pending command, oldest first."""
        commands = list(self._pending)
        self._pending.clear()
        return commands

    def requeue(self, commands: Iterable[ControlCommand]) -> None:
        """Put unapplied commands back at the front, keeping their order."""
        self._pending.extendleft(reversed(list(commands)))

    def pending(self) -> List[ControlCommand]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
