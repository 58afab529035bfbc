"""
Audit sink implementations.

LoggingAuditSink mirrors audit events into the structured log.
BufferedDatabaseAuditSink persists them to the audit_log table in
batches from a background task.
"""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Optional, Set

from ..database.connection import DatabaseSessionManager
from ..database.models import AuditLogEntry, utc_now
from ..database.repository import AuditLogRepository
from ..types import AuditLevel
from ..utils.logging import get_logger
from .base import AuditSink, to_jsonable

logger = get_logger(__name__)


class LoggingAuditSink(AuditSink):
    """Writes audit events as structlog events named audit_<action>."""

    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        fields = {
            "audit_level": level.value,
            "entity_type": entity_type,
            "entity_id": entity_id,
            **to_jsonable(details or {}),
        }
        event = f"audit_{action.lower()}"
        if level == AuditLevel.ERROR:
            logger.error(event, **fields)
        elif level == AuditLevel.WARN:
            logger.warning(event, **fields)
        else:
            logger.info(event, **fields)


class BufferedDatabaseAuditSink(AuditSink):
    """
    Persists audit events to the database without blocking the caller.

    Features:
    - Events are buffered in memory and written in batches
    - Periodic flush from a background task (default every 5 seconds)
    - ERROR events schedule an immediate flush
    - Failed writes are put back in the buffer; the buffer is bounded
      and drops the oldest events when full
    """

    DEFAULT_FLUSH_INTERVAL = 5.0
    DEFAULT_MAX_BUFFER = 1000

    def __init__(
        self,
        db: DatabaseSessionManager,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_buffer: int = DEFAULT_MAX_BUFFER,
    ):
        """
        Initialize the sink.

        Args:
            db: Database session manager
            flush_interval: Seconds between background flushes
            max_buffer: Maximum events held in memory
        """
        self.db = db
        self.flush_interval = flush_interval
        self.max_buffer = max_buffer

        self._buffer: Deque[Dict[str, Any]] = deque()
        self._dropped = 0
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def dropped(self) -> int:
        """Events discarded because the buffer was full."""
        return self._dropped

    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._append({
            "ts": utc_now(),
            "level": level,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": to_jsonable(details or {}),
        })

        if level == AuditLevel.ERROR:
            self._schedule_flush()

    def _append(self, entry: Dict[str, Any]) -> None:
        if len(self._buffer) >= self.max_buffer:
            self._buffer.popleft()
            self._dropped += 1
            logger.warning("audit_buffer_full", dropped=self._dropped, max_buffer=self.max_buffer)
        self._buffer.append(entry)

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next periodic or final flush picks it up
            return
        task = loop.create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._flush_loop())
            logger.info("audit_sink_started", flush_interval=self.flush_interval)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush()

    async def flush(self) -> None:
        """Write all buffered events in one transaction."""
        async with self._lock:
            if not self._buffer:
                return

            batch = list(self._buffer)
            self._buffer.clear()

            try:
                async with self.db.session() as session:
                    await AuditLogRepository(session).add_many(
                        AuditLogEntry(**entry) for entry in batch
                    )
                logger.debug("audit_flushed", count=len(batch))
            except Exception as e:
                logger.warning("audit_flush_failed", count=len(batch), error=str(e))
                self._requeue(batch)

    def _requeue(self, batch: list) -> None:
        # Older events go back in front of anything logged during the write
        newer = list(self._buffer)
        self._buffer.clear()
        for entry in batch + newer:
            self._append(entry)

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        await self.flush()
        logger.info("audit_sink_closed", remaining=len(self._buffer), dropped=self._dropped)


class MultiAuditSink(AuditSink):
    """Fans every event out to several sinks."""

    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        for sink in self.sinks:
            sink.log(level, action, entity_type=entity_type, entity_id=entity_id, details=details)

    async def start(self) -> None:
        for sink in self.sinks:
            await sink.start()

    async def flush(self) -> None:
        for sink in self.sinks:
            await sink.flush()

    async def close(self) -> None:
        for sink in self.sinks:
            await sink.close()
