"""SQLAlchemy implementation of the transaction store."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from guarantee_engine.exceptions import ConflictException, DuplicateReferenceException
from guarantee_engine.models.enums import (
    DisputeDecision,
    EscrowStatus,
    GuaranteeType,
    RefundMethod,
)
from guarantee_engine.models.guaranteed_transaction import GuaranteedTransaction
from guarantee_engine.modules.escrow.domain import (
    ClientSnapshot,
    DeliveryInfo,
    Dispute,
    Guarantee,
    Refund,
    TimelineEvent,
    Transaction,
)
from guarantee_engine.modules.escrow.repository import TransactionFilter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    return value.astimezone(UTC).isoformat() if value is not None else None


def _as_utc(value: Any) -> datetime | None:
    """Parse a stored timestamp into an aware UTC datetime.

    JSON documents hold ISO-8601 strings; some drivers (SQLite) hand back naive
    datetimes for timestamptz columns, which are UTC by construction here.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _event_to_json(event: TimelineEvent) -> dict:
    return {
        "status": event.status.value,
        "timestamp": _to_iso(event.timestamp),
        "note": event.note,
        "notified_client": event.notified_client,
        "admin_id": event.admin_id,
    }


def _event_from_json(data: dict) -> TimelineEvent:
    return TimelineEvent(
        status=EscrowStatus(data["status"]),
        timestamp=_as_utc(data["timestamp"]),
        note=data.get("note"),
        notified_client=bool(data.get("notified_client", False)),
        admin_id=data.get("admin_id"),
    )


def _guarantee_to_json(guarantee: Guarantee) -> dict:
    return {
        "type": guarantee.type.value,
        "description": guarantee.description,
        "valid_until": _to_iso(guarantee.valid_until),
        "conditions": guarantee.conditions,
    }


def _guarantee_from_json(data: dict) -> Guarantee:
    return Guarantee(
        type=GuaranteeType(data["type"]),
        description=data["description"],
        valid_until=_as_utc(data["valid_until"]),
        conditions=data.get("conditions") or "",
    )


def _delivery_to_json(delivery: DeliveryInfo | None) -> dict | None:
    if delivery is None:
        return None
    return {
        "method": delivery.method,
        "tracking_number": delivery.tracking_number,
        "carrier": delivery.carrier,
        "estimated_date": _to_iso(delivery.estimated_date),
        "actual_date": _to_iso(delivery.actual_date),
        "proof_url": delivery.proof_url,
    }


def _delivery_from_json(data: dict | None) -> DeliveryInfo | None:
    if not data:
        return None
    return DeliveryInfo(
        method=data.get("method"),
        tracking_number=data.get("tracking_number"),
        carrier=data.get("carrier"),
        estimated_date=_as_utc(data.get("estimated_date")),
        actual_date=_as_utc(data.get("actual_date")),
        proof_url=data.get("proof_url"),
    )


def _dispute_to_json(dispute: Dispute | None) -> dict | None:
    if dispute is None:
        return None
    return {
        "opened_at": _to_iso(dispute.opened_at),
        "reason": dispute.reason,
        "description": dispute.description,
        "evidence": list(dispute.evidence),
        "resolution": dispute.resolution,
        "resolved_at": _to_iso(dispute.resolved_at),
        "decision": dispute.decision.value if dispute.decision else None,
    }


def _dispute_from_json(data: dict | None) -> Dispute | None:
    if not data:
        return None
    return Dispute(
        opened_at=_as_utc(data["opened_at"]),
        reason=data["reason"],
        description=data["description"],
        evidence=tuple(data.get("evidence") or ()),
        resolution=data.get("resolution"),
        resolved_at=_as_utc(data.get("resolved_at")),
        decision=DisputeDecision(data["decision"]) if data.get("decision") else None,
    )


def _refund_to_json(refund: Refund | None) -> dict | None:
    if refund is None:
        return None
    return {
        "amount": str(refund.amount),
        "reason": refund.reason,
        "method": refund.method.value,
        "processed_at": _to_iso(refund.processed_at),
        "transaction_id": refund.transaction_id,
    }


def _refund_from_json(data: dict | None) -> Refund | None:
    if not data:
        return None
    return Refund(
        amount=Decimal(str(data["amount"])),
        reason=data["reason"],
        method=RefundMethod(data["method"]),
        processed_at=_as_utc(data.get("processed_at")),
        transaction_id=data.get("transaction_id"),
    )


def _row_to_transaction(row: GuaranteedTransaction) -> Transaction:
    client = row.client or {}
    return Transaction(
        reference=row.reference,
        status=EscrowStatus(row.status),
        amount=Decimal(str(row.amount)),
        currency=row.currency,
        client=ClientSnapshot(
            name=client["name"],
            phone=client["phone"],
            email=client.get("email"),
        ),
        timeline=tuple(_event_from_json(item) for item in row.timeline),
        guarantees=tuple(_guarantee_from_json(item) for item in row.guarantees),
        paid_amount=Decimal(str(row.paid_amount)),
        user_id=row.user_id,
        order_id=row.order_id,
        group_order_id=row.group_order_id,
        payment_received_at=_as_utc(row.payment_received_at),
        order_placed_at=_as_utc(row.order_placed_at),
        delivered_at=_as_utc(row.delivered_at),
        verification_ends_at=_as_utc(row.verification_ends_at),
        completed_at=_as_utc(row.completed_at),
        delivery=_delivery_from_json(row.delivery),
        dispute=_dispute_from_json(row.dispute),
        refund=_refund_from_json(row.refund),
        created_at=_as_utc(row.created_at),
        version=row.version,
    )


def _transaction_values(transaction: Transaction) -> dict[str, Any]:
    values: dict[str, Any] = {
        "reference": transaction.reference,
        "user_id": transaction.user_id,
        "order_id": transaction.order_id,
        "group_order_id": transaction.group_order_id,
        "client": {
            "name": transaction.client.name,
            "phone": transaction.client.phone,
            "email": transaction.client.email,
        },
        "amount": transaction.amount,
        "currency": transaction.currency,
        "paid_amount": transaction.paid_amount,
        "status": transaction.status,
        "timeline": [_event_to_json(event) for event in transaction.timeline],
        "guarantees": [_guarantee_to_json(g) for g in transaction.guarantees],
        "payment_received_at": transaction.payment_received_at,
        "order_placed_at": transaction.order_placed_at,
        "delivered_at": transaction.delivered_at,
        "verification_ends_at": transaction.verification_ends_at,
        "completed_at": transaction.completed_at,
        "delivery": _delivery_to_json(transaction.delivery),
        "dispute": _dispute_to_json(transaction.dispute),
        "dispute_opened_at": transaction.dispute.opened_at if transaction.dispute else None,
        "refund": _refund_to_json(transaction.refund),
    }
    if transaction.created_at is not None:
        values["created_at"] = transaction.created_at
    return values


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlTransactionStore:
    """Store backed by the ``guaranteed_transactions`` table.

    The caller owns the session and its commit; this class only issues
    statements. Updates are guarded by ``WHERE version = :expected`` so two
    writers holding the same snapshot cannot both succeed.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_reference(self, reference: str) -> Transaction | None:
        result = await self.session.execute(
            select(GuaranteedTransaction)
            .where(GuaranteedTransaction.reference == reference)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _row_to_transaction(row) if row is not None else None

    async def find_by_filter(self, criteria: TransactionFilter) -> list[Transaction]:
        query = select(GuaranteedTransaction)

        if criteria.statuses is not None:
            query = query.where(GuaranteedTransaction.status.in_(criteria.statuses))
        if criteria.user_id is not None:
            query = query.where(GuaranteedTransaction.user_id == criteria.user_id)
        if criteria.verification_ended_before is not None:
            query = query.where(
                GuaranteedTransaction.verification_ends_at.isnot(None),
                GuaranteedTransaction.verification_ends_at < criteria.verification_ended_before,
            )
        if criteria.without_dispute:
            query = query.where(GuaranteedTransaction.dispute_opened_at.is_(None))

        query = query.order_by(
            GuaranteedTransaction.created_at.desc(), GuaranteedTransaction.reference.desc()
        ).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return [_row_to_transaction(row) for row in result.scalars().all()]

    async def save(self, transaction: Transaction) -> Transaction:
        values = _transaction_values(transaction)
        new_version = transaction.version + 1

        if transaction.version == 0:
            if await self._reference_taken(transaction.reference):
                raise DuplicateReferenceException(
                    f"Reference {transaction.reference} already exists"
                )
            try:
                # Savepoint: a unique violation must not abort the caller's transaction
                async with self.session.begin_nested():
                    await self.session.execute(
                        insert(GuaranteedTransaction).values(**values, version=new_version)
                    )
            except IntegrityError as exc:
                raise DuplicateReferenceException(
                    f"Reference {transaction.reference} already exists"
                ) from exc
        else:
            result = await self.session.execute(
                update(GuaranteedTransaction)
                .where(
                    GuaranteedTransaction.reference == transaction.reference,
                    GuaranteedTransaction.version == transaction.version,
                )
                .values(**values, version=new_version)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictException(
                    f"Transaction {transaction.reference} was modified concurrently"
                )

        await self.session.flush()
        logger.debug("Saved transaction %s at version %d", transaction.reference, new_version)
        return replace(transaction, version=new_version)

    def savepoint(self):
        """Nested transaction; rolling it back leaves earlier work in the session intact."""
        return self.session.begin_nested()

    async def _reference_taken(self, reference: str) -> bool:
        existing = await self.session.execute(
            select(GuaranteedTransaction.id).where(GuaranteedTransaction.reference == reference)
        )
        return existing.scalar_one_or_none() is not None
