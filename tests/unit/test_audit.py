"""
Unit tests for audit sinks.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from conftest import RecordingAuditSink
from fundingpilot.audit.base import NullAuditSink, to_jsonable
from fundingpilot.audit.sinks import BufferedDatabaseAuditSink, LoggingAuditSink, MultiAuditSink
from fundingpilot.database.repository import AuditLogRepository
from fundingpilot.types import AuditLevel, RiskTier


class TestToJsonable:
    """Tests for detail serialization."""

    def test_converts_nested_values(self):
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        data = to_jsonable({"pnl": Decimal("1.5"), "tier": RiskTier.SAFE, "items": [ts], "n": 3})
        assert data == {"pnl": 1.5, "tier": "safe", "items": [ts.isoformat()], "n": 3}


class TestBufferedDatabaseAuditSink:
    """Tests for BufferedDatabaseAuditSink."""

    async def _recent(self, db):
        async with db.session() as session:
            return await AuditLogRepository(session).get_recent()

    @pytest.mark.asyncio
    async def test_buffers_until_flush(self, db):
        """Test events are held in memory until flushed."""
        sink = BufferedDatabaseAuditSink(db)
        sink.action("MODE_CHANGE", entity_type="risk_state", details={"from": "paper", "to": "live"})
        sink.info("FUNDING_COLLECTED", details={"funding_added": Decimal("0.01")})

        assert sink.buffered == 2
        assert await self._recent(db) == []

        await sink.flush()

        entries = await self._recent(db)
        assert sink.buffered == 0
        assert {entry.action for entry in entries} == {"MODE_CHANGE", "FUNDING_COLLECTED"}
        funding = next(entry for entry in entries if entry.action == "FUNDING_COLLECTED")
        assert funding.details == {"funding_added": 0.01}
        assert funding.level == AuditLevel.INFO

    @pytest.mark.asyncio
    async def test_error_flushes_immediately(self, db):
        """Test an ERROR event schedules a flush without waiting for the timer."""
        sink = BufferedDatabaseAuditSink(db, flush_interval=3600)
        sink.error("CYCLE_ERROR", details={"error": "boom"})

        await asyncio.gather(*sink._pending)

        entries = await self._recent(db)
        assert [entry.action for entry in entries] == ["CYCLE_ERROR"]

    @pytest.mark.asyncio
    async def test_failed_flush_requeues(self, db):
        """Test events survive a failed write and are written on the next flush."""
        sink = BufferedDatabaseAuditSink(db)
        sink.warn("CYCLE_SKIP")

        with patch.object(AuditLogRepository, "add_many", side_effect=RuntimeError("db down")):
            await sink.flush()

        assert sink.buffered == 1

        await sink.flush()
        assert [entry.action for entry in await self._recent(db)] == ["CYCLE_SKIP"]

    def test_drops_oldest_when_full(self):
        """Test the bounded buffer discards the oldest events first."""
        sink = BufferedDatabaseAuditSink(MagicMock(), max_buffer=2)
        for action in ("FIRST", "SECOND", "THIRD"):
            sink.info(action)

        assert sink.buffered == 2
        assert sink.dropped == 1
        assert [entry["action"] for entry in sink._buffer] == ["SECOND", "THIRD"]

    @pytest.mark.asyncio
    async def test_close_flushes(self, db):
        sink = BufferedDatabaseAuditSink(db)
        await sink.start()
        sink.action("BOT_STARTED")

        await sink.close()

        assert [entry.action for entry in await self._recent(db)] == ["BOT_STARTED"]


class TestMultiAuditSink:
    """Tests for MultiAuditSink."""

    def test_fans_out(self):
        first = RecordingAuditSink()
        second = RecordingAuditSink()
        sink = MultiAuditSink(first, second, NullAuditSink())

        sink.warn("STRESS_TEST_EXCEEDED", entity_type="opportunity", details={"symbol": "BTC"})

        for recorder in (first, second):
            assert recorder.entries == [{
                "level": AuditLevel.WARN,
                "action": "STRESS_TEST_EXCEEDED",
                "entity_type": "opportunity",
                "entity_id": None,
                "details": {"symbol": "BTC"},
            }]


class TestLoggingAuditSink:
    """Tests for LoggingAuditSink."""

    def test_levels_map_to_log_methods(self):
        """Test audit levels are logged at matching severities."""
        mock_logger = MagicMock()
        with patch("fundingpilot.audit.sinks.logger", mock_logger):
            sink = LoggingAuditSink()
            sink.error("KILL_SWITCH_TRIGGERED", details={"reason": "loss"})
            sink.warn("CYCLE_SKIP")
            sink.action("HEDGE_EXECUTED", entity_id="h1")

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.args == ("audit_kill_switch_triggered",)
        assert mock_logger.error.call_args.kwargs["reason"] == "loss"
        mock_logger.warning.assert_called_once()
        assert mock_logger.info.call_args.kwargs["entity_id"] == "h1"
