"""Dispute lifecycle — opening a claim and resolving it into a refund or outcome."""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

from guarantee_engine.config import settings
from guarantee_engine.exceptions import (
    BusinessRuleException,
    DeliveryNotRecordedException,
    DisputeWindowExpiredException,
    DuplicateDisputeException,
    NotFoundException,
    ValidationException,
)
from guarantee_engine.models.enums import DisputeDecision, EscrowStatus, RefundMethod
from guarantee_engine.modules.escrow.domain import Dispute, Refund, Transaction
from guarantee_engine.modules.escrow.service import EscrowService

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION_NOTE = "Resolved by admin"

# Where each decision leaves the transaction
_DECISION_TARGETS: dict[DisputeDecision, EscrowStatus] = {
    DisputeDecision.REFUND_FULL: EscrowStatus.REFUNDED,
    DisputeDecision.REFUND_PARTIAL: EscrowStatus.REFUNDED,
    DisputeDecision.REPLACEMENT: EscrowStatus.ORDER_PLACED,
    DisputeDecision.REJECTED: EscrowStatus.COMPLETED,
}

_DECISION_NOTES: dict[DisputeDecision, str] = {
    DisputeDecision.REFUND_FULL: "Full refund",
    DisputeDecision.REFUND_PARTIAL: "Partial refund",
    DisputeDecision.REPLACEMENT: "Product replacement",
    DisputeDecision.REJECTED: "Dispute rejected",
}


class DisputeService:
    """Opens and resolves the single dispute a transaction may carry.

    Both operations write the dispute sub-record and the resulting status in
    one save through ``EscrowService.apply_transition``.
    """

    def __init__(self, escrow: EscrowService) -> None:
        self.escrow = escrow

    async def open_dispute(
        self,
        reference: str,
        *,
        reason: str,
        description: str,
        evidence: tuple[str, ...] | list[str] = (),
    ) -> Transaction:
        transaction = await self.escrow.get_transaction(reference)
        now = self.escrow.clock()

        if transaction.dispute is not None:
            raise DuplicateDisputeException(
                f"Transaction {reference} already has a dispute"
            )
        if transaction.delivered_at is None:
            raise DeliveryNotRecordedException(
                f"Transaction {reference} cannot be disputed before delivery"
            )
        deadline = transaction.dispute_deadline(self.escrow.verification_window)
        if deadline is not None and now > deadline:
            raise DisputeWindowExpiredException(
                f"The claim window for {reference} closed at {deadline.isoformat()}"
            )

        dispute = Dispute(
            opened_at=now,
            reason=reason,
            description=description,
            evidence=tuple(evidence),
        )
        updated = await self.escrow.apply_transition(
            replace(transaction, dispute=dispute),
            EscrowStatus.DISPUTED,
            note=f"Dispute opened: {reason}",
            notify_client=True,
        )
        logger.info("Dispute opened on %s: %s", reference, reason)
        return updated

    async def resolve_dispute(
        self,
        reference: str,
        *,
        decision: DisputeDecision,
        note: str | None = None,
        admin_id: str | None = None,
        refund_amount: Decimal | None = None,
        refund_method: RefundMethod | None = None,
    ) -> Transaction:
        """Close the open dispute with ``decision``.

        refund_full refunds the whole amount, refund_partial refunds
        ``refund_amount`` (required, positive, at most the transaction amount),
        replacement sends the order back to ``order_placed`` and rejected
        completes the sale.
        """
        transaction = await self.escrow.get_transaction(reference)
        dispute = transaction.dispute
        if dispute is None:
            raise NotFoundException(f"No dispute found for transaction {reference}")
        if dispute.is_resolved:
            raise BusinessRuleException(f"The dispute on {reference} is already resolved")

        now = self.escrow.clock()
        resolution = note or DEFAULT_RESOLUTION_NOTE
        method = refund_method or RefundMethod(settings.default_refund_method)

        refund = transaction.refund
        if decision == DisputeDecision.REFUND_FULL:
            refund = Refund(
                amount=transaction.amount,
                reason=dispute.reason,
                method=method,
                processed_at=now,
            )
        elif decision == DisputeDecision.REFUND_PARTIAL:
            if refund_amount is None:
                raise ValidationException("refund_amount is required for a partial refund")
            if refund_amount <= 0 or refund_amount > transaction.amount:
                raise ValidationException(
                    f"refund_amount must be greater than 0 and at most {transaction.amount}"
                )
            refund = Refund(
                amount=refund_amount,
                reason=dispute.reason,
                method=method,
                processed_at=now,
            )

        event_note = _DECISION_NOTES[decision]
        if decision == DisputeDecision.REFUND_PARTIAL:
            event_note = f"{event_note} ({refund_amount} {transaction.currency})"

        resolved = replace(
            transaction,
            dispute=replace(dispute, resolution=resolution, resolved_at=now, decision=decision),
            refund=refund,
        )
        updated = await self.escrow.apply_transition(
            resolved,
            _DECISION_TARGETS[decision],
            note=f"{event_note}: {resolution}",
            admin_id=admin_id,
            notify_client=True,
        )
        logger.info("Dispute on %s resolved: %s", reference, decision.value)
        return updated
