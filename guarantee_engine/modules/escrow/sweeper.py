"""Reconciliation sweeper — auto-completes transactions whose verification window lapsed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.constants import (
    AWAITING_VERIFICATION_STATUSES,
    NOTE_AUTO_COMPLETED,
)
from guarantee_engine.modules.escrow.repository import TransactionFilter
from guarantee_engine.modules.escrow.service import EscrowService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    completed: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "completed": len(self.completed),
            "errors": len(self.failures),
        }


class ReconciliationSweeper:
    """Moves delivered, undisputed transactions to ``completed`` once their window closes.

    Each candidate runs inside its own store savepoint: a failure rolls back
    only that candidate and is logged and reported without stopping the batch.
    Completed transactions no longer match the selection, so a second run over
    the same data does nothing.
    """

    def __init__(self, escrow: EscrowService) -> None:
        self.escrow = escrow

    async def run(self) -> SweepReport:
        now = self.escrow.clock()
        candidates = await self.escrow.store.find_by_filter(
            TransactionFilter(
                statuses=AWAITING_VERIFICATION_STATUSES,
                verification_ended_before=now,
                without_dispute=True,
            )
        )

        report = SweepReport(checked=len(candidates))
        for transaction in candidates:
            try:
                async with self.escrow.store.savepoint():
                    await self.escrow.apply_transition(
                        transaction,
                        EscrowStatus.COMPLETED,
                        note=NOTE_AUTO_COMPLETED,
                        notify_client=True,
                    )
                report.completed.append(transaction.reference)
            except Exception as exc:
                logger.exception("Error auto-completing transaction %s", transaction.reference)
                report.failures[transaction.reference] = str(exc)

        if candidates:
            logger.info(
                "Sweep finished: %d checked, %d completed, %d failed",
                report.checked, len(report.completed), len(report.failures),
            )
        return report
