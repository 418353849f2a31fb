"""FastAPI dependency factories wiring the escrow services to the request session."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from guarantee_engine.database.session import get_db
from guarantee_engine.modules.escrow.dispute_service import DisputeService
from guarantee_engine.modules.escrow.notifications import OutboxNotificationDispatcher
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sql_repository import SqlTransactionStore


def get_escrow_service(db: AsyncSession = Depends(get_db)) -> EscrowService:
    return EscrowService(SqlTransactionStore(db), OutboxNotificationDispatcher(db))


def get_dispute_service(
    escrow: EscrowService = Depends(get_escrow_service),
) -> DisputeService:
    return DisputeService(escrow)
