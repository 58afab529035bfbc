"""
Repository pattern for data access.

Provides a clean interface for database operations,
abstracting away SQLAlchemy details from the business logic.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..types import AuditLevel
from .models import (
    RISK_STATE_ID,
    AuditLogEntry,
    HedgePosition,
    MarketMetricRecord,
    PositionStatus,
    RiskStateRecord,
)


class HedgePositionRepository:
    """Repository for HedgePosition operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, position_id: str) -> Optional[HedgePosition]:
        """Get a position by ID."""
        result = await self.session.execute(
            select(HedgePosition).where(HedgePosition.id == position_id)
        )
        return result.scalar_one_or_none()

    async def get_open_positions(self) -> List[HedgePosition]:
        """Get all open positions, oldest first."""
        result = await self.session.execute(
            select(HedgePosition)
            .where(HedgePosition.status == PositionStatus.OPEN)
            .order_by(HedgePosition.entry_ts)
        )
        return list(result.scalars().all())

    async def get_positions(
        self,
        status: Optional[PositionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[HedgePosition]:
        """Get positions, newest first, optionally filtered by status."""
        query = select(HedgePosition)
        if status is not None:
            query = query.where(HedgePosition.status == status)
        result = await self.session.execute(
            query.order_by(HedgePosition.entry_ts.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def create(self, position: HedgePosition) -> HedgePosition:
        """Create a new position."""
        self.session.add(position)
        await self.session.flush()
        await self.session.refresh(position)
        return position

    async def update(self, position_id: str, **kwargs) -> int:
        """Update position fields. Returns the number of rows touched."""
        result = await self.session.execute(
            update(HedgePosition)
            .where(HedgePosition.id == position_id)
            .values(**kwargs, updated_at=datetime.now(timezone.utc))
        )
        await self.session.flush()
        return result.rowcount

    async def close(
        self,
        position_id: str,
        status: PositionStatus,
        exit_long_price: Decimal,
        exit_short_price: Decimal,
        realized_pnl_eur: Decimal,
        exit_reason: str,
    ) -> int:
        """
        Move an open position to a terminal state.

        The status guard makes a second close of the same position a no-op.

        Returns:
            1 if the position was closed by this call, 0 otherwise
        """
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(HedgePosition)
            .where(HedgePosition.id == position_id)
            .where(HedgePosition.status == PositionStatus.OPEN)
            .values(
                status=status,
                exit_ts=now,
                exit_long_price=exit_long_price,
                exit_short_price=exit_short_price,
                realized_pnl_eur=realized_pnl_eur,
                exit_reason=exit_reason,
                updated_at=now,
            )
        )
        await self.session.flush()
        return result.rowcount

    async def accrue_funding(
        self,
        position_id: str,
        expected_intervals: int,
        intervals: int,
        funding_eur: Decimal,
    ) -> int:
        """
        Add funding for newly elapsed intervals.

        Only applies while the stored interval count still equals
        expected_intervals, so a repeated or concurrent accrual of the
        same intervals is a no-op.

        Returns:
            1 if funding was added, 0 otherwise
        """
        result = await self.session.execute(
            update(HedgePosition)
            .where(HedgePosition.id == position_id)
            .where(HedgePosition.status == PositionStatus.OPEN)
            .where(HedgePosition.intervals_collected == expected_intervals)
            .values(
                funding_collected_eur=HedgePosition.funding_collected_eur + funding_eur,
                intervals_collected=intervals,
                updated_at=datetime.now(timezone.utc),
            )
        )
        await self.session.flush()
        return result.rowcount


class RiskStateRepository:
    """Repository for the single RiskStateRecord row."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self) -> Optional[RiskStateRecord]:
        """Read the whole risk state row in one SELECT."""
        result = await self.session.execute(
            select(RiskStateRecord).where(RiskStateRecord.id == RISK_STATE_ID)
        )
        return result.scalar_one_or_none()

    async def ensure(self, **defaults) -> RiskStateRecord:
        """Get the risk state row, creating it with defaults if missing."""
        record = await self.get()
        if record is None:
            record = RiskStateRecord(id=RISK_STATE_ID, **defaults)
            self.session.add(record)
            await self.session.flush()
            await self.session.refresh(record)
        return record

    async def update(self, **kwargs) -> int:
        """Update fields of the risk state row in one statement."""
        result = await self.session.execute(
            update(RiskStateRecord)
            .where(RiskStateRecord.id == RISK_STATE_ID)
            .values(**kwargs, updated_at=datetime.now(timezone.utc))
        )
        await self.session.flush()
        return result.rowcount

    async def increment_totals(self, realized_pnl_eur: Decimal, funding_eur: Decimal) -> int:
        """
        Add to the lifetime totals atomically.

        Uses column arithmetic in the UPDATE so concurrent writers
        cannot lose an increment.
        """
        result = await self.session.execute(
            update(RiskStateRecord)
            .where(RiskStateRecord.id == RISK_STATE_ID)
            .values(
                total_realized_pnl_eur=RiskStateRecord.total_realized_pnl_eur + realized_pnl_eur,
                total_funding_collected_eur=RiskStateRecord.total_funding_collected_eur + funding_eur,
                updated_at=datetime.now(timezone.utc),
            )
        )
        await self.session.flush()
        return result.rowcount


class AuditLogRepository:
    """Repository for AuditLogEntry operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_many(self, entries: Iterable[AuditLogEntry]) -> None:
        """Insert a batch of audit entries."""
        self.session.add_all(list(entries))
        await self.session.flush()

    async def get_recent(
        self,
        limit: int = 100,
        level: Optional[AuditLevel] = None,
        action: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        """Get recent audit entries, newest first."""
        query = select(AuditLogEntry)
        if level is not None:
            query = query.where(AuditLogEntry.level == level)
        if action is not None:
            query = query.where(AuditLogEntry.action == action)
        result = await self.session.execute(
            query.order_by(AuditLogEntry.ts.desc()).limit(limit)
        )
        return list(result.scalars().all())


class MarketMetricRepository:
    """Repository for MarketMetricRecord operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: MarketMetricRecord) -> MarketMetricRecord:
        """Insert a metric row."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_latest_per_market(self) -> List[MarketMetricRecord]:
        """Newest row for every (symbol, exchange)."""
        latest = (
            select(
                MarketMetricRecord.symbol,
                MarketMetricRecord.exchange,
                func.max(MarketMetricRecord.ts).label("max_ts"),
            )
            .group_by(MarketMetricRecord.symbol, MarketMetricRecord.exchange)
            .subquery()
        )
        result = await self.session.execute(
            select(MarketMetricRecord)
            .join(
                latest,
                and_(
                    MarketMetricRecord.symbol == latest.c.symbol,
                    MarketMetricRecord.exchange == latest.c.exchange,
                    MarketMetricRecord.ts == latest.c.max_ts,
                ),
            )
            .order_by(MarketMetricRecord.id)
        )

        # Rows sharing a timestamp: keep the last inserted
        newest: Dict[tuple, MarketMetricRecord] = {}
        for record in result.scalars().all():
            newest[(record.symbol, record.exchange)] = record
        return list(newest.values())
