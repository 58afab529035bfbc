"""
SQLAlchemy-backed state store.
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import DatabaseSessionManager
from ..database.models import ENTRY_FIELDS, HedgePosition, PositionStatus
from ..database.repository import HedgePositionRepository, RiskStateRepository
from ..errors import StoreError
from ..utils.logging import get_logger
from .base import RiskSnapshot, StateStore

logger = get_logger(__name__)


class SqlStateStore(StateStore):
    """
    State store on top of the repositories.

    Every call runs in its own transaction. Database failures surface
    as StoreError so the scheduler can abort the cycle cleanly.
    """

    def __init__(self, db: DatabaseSessionManager):
        """
        Initialize the store.

        Args:
            db: Initialized database session manager
        """
        self.db = db

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed: {e}") from e

    # ==================== Risk State ====================

    async def ensure_risk_state(self, **defaults) -> RiskSnapshot:
        async with self._session("ensure_risk_state") as session:
            record = await RiskStateRepository(session).ensure(**defaults)
            return RiskSnapshot.from_record(record)

    async def get_risk_state(self) -> RiskSnapshot:
        async with self._session("get_risk_state") as session:
            record = await RiskStateRepository(session).get()
            if record is None:
                raise StoreError("Risk state not initialized. Call ensure_risk_state() first.")
            return RiskSnapshot.from_record(record)

    async def update_risk_state(self, **fields) -> None:
        async with self._session("update_risk_state") as session:
            updated = await RiskStateRepository(session).update(**fields)
            if updated == 0:
                raise StoreError("Risk state not initialized. Call ensure_risk_state() first.")

    async def increment_totals(self, realized_pnl_eur: Decimal, funding_eur: Decimal) -> None:
        async with self._session("increment_totals") as session:
            updated = await RiskStateRepository(session).increment_totals(realized_pnl_eur, funding_eur)
            if updated == 0:
                raise StoreError("Risk state not initialized. Call ensure_risk_state() first.")

    # ==================== Positions ====================

    async def create_position(self, position: HedgePosition) -> HedgePosition:
        async with self._session("create_position") as session:
            return await HedgePositionRepository(session).create(position)

    async def get_position(self, position_id: str) -> Optional[HedgePosition]:
        async with self._session("get_position") as session:
            return await HedgePositionRepository(session).get_by_id(position_id)

    async def get_open_positions(self) -> List[HedgePosition]:
        async with self._session("get_open_positions") as session:
            return await HedgePositionRepository(session).get_open_positions()

    async def list_positions(
        self,
        status: Optional[PositionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[HedgePosition]:
        async with self._session("list_positions") as session:
            return await HedgePositionRepository(session).get_positions(status, limit, offset)

    async def update_position(self, position_id: str, **fields) -> None:
        frozen = sorted(ENTRY_FIELDS.intersection(fields))
        if frozen:
            raise StoreError(f"Entry fields are immutable: {', '.join(frozen)}")
        async with self._session("update_position") as session:
            await HedgePositionRepository(session).update(position_id, **fields)

    async def accrue_funding(
        self,
        position_id: str,
        expected_intervals: int,
        intervals: int,
        funding_eur: Decimal,
    ) -> bool:
        async with self._session("accrue_funding") as session:
            updated = await HedgePositionRepository(session).accrue_funding(
                position_id, expected_intervals, intervals, funding_eur
            )
            return updated == 1

    async def close_position(
        self,
        position_id: str,
        status: PositionStatus,
        exit_long_price: Decimal,
        exit_short_price: Decimal,
        realized_pnl_eur: Decimal,
        exit_reason: str,
    ) -> bool:
        async with self._session("close_position") as session:
            closed = await HedgePositionRepository(session).close(
                position_id,
                status=status,
                exit_long_price=exit_long_price,
                exit_short_price=exit_short_price,
                realized_pnl_eur=realized_pnl_eur,
                exit_reason=exit_reason,
            )
            return closed == 1
