"""Guaranteed-transaction aggregate and the pure functions that evolve it.

Every record is a frozen dataclass. Nothing here performs I/O: the service
layer loads a snapshot, composes these functions and hands the result to a
store. Invariants that must hold for every snapshot are checked in
``Transaction.__post_init__`` so an inconsistent aggregate cannot be built.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from decimal import Decimal

from guarantee_engine.clock import require_utc_timestamp
from guarantee_engine.models.enums import (
    DisputeDecision,
    EscrowStatus,
    GuaranteeType,
    RefundMethod,
)


@dataclass(frozen=True, slots=True)
class ClientSnapshot:
    """Client contact details captured when the transaction was created."""

    name: str
    phone: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    status: EscrowStatus
    timestamp: datetime
    note: str | None = None
    notified_client: bool = False
    admin_id: str | None = None

    def __post_init__(self) -> None:
        require_utc_timestamp("timestamp", self.timestamp)


@dataclass(frozen=True, slots=True)
class Guarantee:
    type: GuaranteeType
    description: str
    valid_until: datetime
    conditions: str


@dataclass(frozen=True, slots=True)
class DeliveryInfo:
    method: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    estimated_date: datetime | None = None
    actual_date: datetime | None = None
    proof_url: str | None = None

    def merge(self, update: DeliveryInfo) -> DeliveryInfo:
        """Return a copy where every field set on ``update`` wins."""
        changes = {
            f.name: getattr(update, f.name)
            for f in fields(update)
            if getattr(update, f.name) is not None
        }
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Dispute:
    opened_at: datetime
    reason: str
    description: str
    evidence: tuple[str, ...] = ()
    resolution: str | None = None
    resolved_at: datetime | None = None
    decision: DisputeDecision | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


@dataclass(frozen=True, slots=True)
class Refund:
    amount: Decimal
    reason: str
    method: RefundMethod
    processed_at: datetime | None = None
    transaction_id: str | None = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """One guaranteed purchase, from first payment to completion or exit."""

    reference: str
    status: EscrowStatus
    amount: Decimal
    currency: str
    client: ClientSnapshot
    timeline: tuple[TimelineEvent, ...]
    guarantees: tuple[Guarantee, ...] = ()
    paid_amount: Decimal = Decimal("0")

    user_id: uuid.UUID | None = None
    order_id: str | None = None
    group_order_id: str | None = None

    payment_received_at: datetime | None = None
    order_placed_at: datetime | None = None
    delivered_at: datetime | None = None
    verification_ends_at: datetime | None = None
    completed_at: datetime | None = None

    delivery: DeliveryInfo | None = None
    dispute: Dispute | None = None
    refund: Refund | None = None

    created_at: datetime | None = None
    # 0 until the first save; stores bump it on every successful write
    version: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if not self.timeline:
            raise ValueError("timeline must contain at least the creation event")
        if self.timeline[-1].status != self.status:
            raise ValueError(
                f"status '{self.status.value}' diverges from the latest timeline "
                f"entry '{self.timeline[-1].status.value}'"
            )
        if self.amount < 0:
            raise ValueError("amount must not be negative")
        if self.refund is not None and self.refund.amount > self.amount:
            raise ValueError("refund amount cannot exceed the transaction amount")
        for name in (
            "payment_received_at",
            "order_placed_at",
            "delivered_at",
            "verification_ends_at",
            "completed_at",
            "created_at",
        ):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    @property
    def last_event(self) -> TimelineEvent:
        return self.timeline[-1]

    @property
    def is_fully_paid(self) -> bool:
        return self.paid_amount >= self.amount

    def dispute_deadline(self, verification_window: timedelta) -> datetime | None:
        """End of the claim window, or None while nothing has been delivered."""
        if self.verification_ends_at is not None:
            return self.verification_ends_at
        if self.delivered_at is not None:
            return self.delivered_at + verification_window
        return None


# ---------------------------------------------------------------------------
# Pure transformations
# ---------------------------------------------------------------------------


def append_event(transaction: Transaction, event: TimelineEvent) -> Transaction:
    """Append ``event`` to the timeline and move ``status`` with it."""
    return replace(
        transaction,
        status=event.status,
        timeline=(*transaction.timeline, event),
    )


def mark_event_notified(transaction: Transaction, index: int) -> Transaction:
    """Flip ``notified_client`` on ``timeline[index]``; the only in-place edit allowed."""
    timeline = list(transaction.timeline)
    timeline[index] = replace(timeline[index], notified_client=True)
    return replace(transaction, timeline=tuple(timeline))


def mark_last_event_notified(transaction: Transaction) -> Transaction:
    return mark_event_notified(transaction, len(transaction.timeline) - 1)


def record_status_dates(
    transaction: Transaction,
    status: EscrowStatus,
    now: datetime,
    verification_window: timedelta,
) -> Transaction:
    """Populate the key date for ``status``. Dates already set are never moved."""
    changes: dict[str, object] = {}

    if status == EscrowStatus.PAYMENT_RECEIVED and transaction.payment_received_at is None:
        changes["payment_received_at"] = now
        changes["paid_amount"] = transaction.amount
    elif status == EscrowStatus.ORDER_PLACED and transaction.order_placed_at is None:
        changes["order_placed_at"] = now
    elif status == EscrowStatus.DELIVERED and transaction.delivered_at is None:
        changes["delivered_at"] = now
        if transaction.verification_ends_at is None:
            changes["verification_ends_at"] = now + verification_window
    elif status == EscrowStatus.COMPLETED and transaction.completed_at is None:
        changes["completed_at"] = now

    if not changes:
        return transaction
    return replace(transaction, **changes)


def merge_delivery(transaction: Transaction, delivery_info: DeliveryInfo) -> Transaction:
    current = transaction.delivery or DeliveryInfo()
    return replace(transaction, delivery=current.merge(delivery_info))
