"""
Unit tests for control commands.
"""

from fundingpilot.engine.commands import (
    MANUAL_CLOSE_REASON,
    STOP_ALL_REASON,
    CommandQueue,
    CommandType,
    ControlCommand,
)
from fundingpilot.types import AutopilotMode


class TestControlCommand:
    """Tests for ControlCommand factories."""

    def test_set_mode_accepts_string(self):
        command = ControlCommand.set_mode("live")
        assert command.type == CommandType.SET_MODE
        assert command.mode == AutopilotMode.LIVE

    def test_close_position_default_reason(self):
        """Test a manual close without a reason gets the standard one."""
        command = ControlCommand.close_position("abc")
        assert command.position_id == "abc"
        assert command.reason == MANUAL_CLOSE_REASON
        assert ControlCommand.close_position("abc", "rebalancing").reason == "rebalancing"

    def test_stop_all_reason(self):
        assert ControlCommand.stop_all().reason == STOP_ALL_REASON

    def test_unique_ids(self):
        assert ControlCommand.reset_kill_switch().id != ControlCommand.reset_kill_switch().id

    def test_to_dict(self):
        data = ControlCommand.set_running(False).to_dict()
        assert data["type"] == "set_running"
        assert data["running"] is False
        assert data["mode"] is None
        assert "submitted_at" in data


class TestCommandQueue:
    """Tests for CommandQueue."""

    def test_drain_in_order(self):
        """Test commands come out oldest first and the queue empties."""
        queue = CommandQueue()
        first = queue.submit(ControlCommand.set_running(True))
        second = queue.submit(ControlCommand.stop_all())

        assert len(queue) == 2
        assert queue.drain() == [first, second]
        assert len(queue) == 0
        assert queue.drain() == []

    def test_requeue_goes_to_front(self):
        """Test requeued commands run before anything submitted later."""
        queue = CommandQueue()
        first = ControlCommand.set_running(True)
        second = ControlCommand.stop_all()
        later = queue.submit(ControlCommand.reset_kill_switch())

        queue.requeue([first, second])

        assert queue.pending() == [first, second, later]
