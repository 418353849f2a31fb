"""Pydantic v2 schemas for guaranteed-transaction API endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from guarantee_engine.models.enums import (
    DisputeDecision,
    EscrowStatus,
    GuaranteeType,
    RefundMethod,
)

# ---------------------------------------------------------------------------
# Sub-records
# ---------------------------------------------------------------------------


class TimelineEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: EscrowStatus
    timestamp: datetime
    note: str | None = None


class AdminTimelineEventResponse(TimelineEventResponse):
    notified_client: bool
    admin_id: str | None = None


class GuaranteeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: GuaranteeType
    description: str
    valid_until: datetime
    conditions: str


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    method: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    estimated_date: datetime | None = None


class AdminDeliveryResponse(DeliveryResponse):
    actual_date: datetime | None = None
    proof_url: str | None = None


class DisputeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    opened_at: datetime
    reason: str
    resolved_at: datetime | None = None


class DisputeResponse(DisputeSummary):
    description: str
    evidence: list[str] = []
    resolution: str | None = None
    decision: DisputeDecision | None = None


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: Decimal
    reason: str
    method: RefundMethod
    processed_at: datetime | None = None
    transaction_id: str | None = None


class ClientResponse(BaseModel):
    name: str
    phone: str
    email: str | None = None


# ---------------------------------------------------------------------------
# Transaction views
# ---------------------------------------------------------------------------


class StatusLabel(BaseModel):
    label: str
    description: str
    icon: str


class TransactionSummaryResponse(BaseModel):
    reference: str
    status: EscrowStatus
    status_label: str
    amount: Decimal
    currency: str
    paid_amount: Decimal
    order_id: str | None = None
    created_at: datetime | None = None


class TransactionListResponse(BaseModel):
    items: list[TransactionSummaryResponse]
    total: int


class PublicTransactionResponse(BaseModel):
    """Tracking view served without authentication; phone is masked, admin ids omitted."""

    reference: str
    status: EscrowStatus
    status_display: StatusLabel
    amount: Decimal
    currency: str
    paid_amount: Decimal
    client: ClientResponse
    timeline: list[TimelineEventResponse]
    guarantees: list[GuaranteeResponse]
    delivery: DeliveryResponse | None = None
    dispute: DisputeSummary | None = None
    delivered_at: datetime | None = None
    verification_ends_at: datetime | None = None
    can_open_dispute: bool
    created_at: datetime | None = None


class AdminTransactionResponse(BaseModel):
    reference: str
    status: EscrowStatus
    amount: Decimal
    currency: str
    paid_amount: Decimal
    client: ClientResponse
    user_id: uuid.UUID | None = None
    order_id: str | None = None
    group_order_id: str | None = None
    timeline: list[AdminTimelineEventResponse]
    guarantees: list[GuaranteeResponse]
    payment_received_at: datetime | None = None
    order_placed_at: datetime | None = None
    delivered_at: datetime | None = None
    verification_ends_at: datetime | None = None
    completed_at: datetime | None = None
    delivery: AdminDeliveryResponse | None = None
    dispute: DisputeResponse | None = None
    refund: RefundResponse | None = None
    allowed_next_statuses: list[EscrowStatus]
    created_at: datetime | None = None
    version: int


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class DisputeOpenRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    photos: list[str] = Field(default_factory=list, max_length=10)
    phone_last4: str | None = Field(None, pattern=r"^\d{4}$")


class DisputeOpenResponse(BaseModel):
    success: bool = True
    reference: str
    status: EscrowStatus
    message: str = "Dispute opened"


class AdminTransactionUpdate(BaseModel):
    """Either resolves the open dispute (``resolve_type``) or advances ``status``."""

    status: EscrowStatus | None = None
    note: str | None = None
    tracking_number: str | None = Field(None, max_length=100)
    carrier: str | None = Field(None, max_length=100)
    resolve_type: DisputeDecision | None = None
    refund_amount: Decimal | None = Field(None, gt=0)
    refund_method: RefundMethod | None = None
    admin_note: str | None = None

    @model_validator(mode="after")
    def _require_action(self) -> AdminTransactionUpdate:
        if self.status is None and self.resolve_type is None:
            raise ValueError("Either status or resolve_type is required")
        return self
