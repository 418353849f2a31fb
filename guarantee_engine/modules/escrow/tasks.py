"""Celery tasks for guaranteed-transaction reconciliation."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from guarantee_engine.database.engine import async_session
from guarantee_engine.modules.escrow.notifications import OutboxNotificationDispatcher
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sql_repository import SqlTransactionStore
from guarantee_engine.modules.escrow.sweeper import ReconciliationSweeper

logger = logging.getLogger(__name__)


async def _auto_complete_verified_async() -> dict:
    async with async_session() as session:
        escrow = EscrowService(
            SqlTransactionStore(session),
            OutboxNotificationDispatcher(session),
        )
        report = await ReconciliationSweeper(escrow).run()
        await session.commit()

    return report.as_dict()


@celery.task(name="guarantee_engine.modules.escrow.tasks.auto_complete_verified_transactions")
def auto_complete_verified_transactions():
    """Complete delivered transactions whose verification window has lapsed."""
    stats = asyncio.run(_auto_complete_verified_async())
    logger.info("Escrow auto-complete: %s", stats)
    return stats
