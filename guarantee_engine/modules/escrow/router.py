"""Guaranteed-transaction API — public tracking, customer claims and admin operations."""

import re
import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from guarantee_engine.auth import (
    AuthenticatedUser,
    get_current_user,
    get_optional_user,
    require_admin,
)
from guarantee_engine.config import settings
from guarantee_engine.exceptions import ForbiddenException
from guarantee_engine.middleware.rate_limit import limiter
from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.constants import STATUS_LABELS
from guarantee_engine.modules.escrow.dependencies import (
    get_dispute_service,
    get_escrow_service,
)
from guarantee_engine.modules.escrow.dispute_service import DisputeService
from guarantee_engine.modules.escrow.domain import DeliveryInfo, Transaction
from guarantee_engine.modules.escrow.reference import normalize_reference
from guarantee_engine.modules.escrow.schemas import (
    AdminDeliveryResponse,
    AdminTimelineEventResponse,
    AdminTransactionResponse,
    AdminTransactionUpdate,
    ClientResponse,
    DeliveryResponse,
    DisputeOpenRequest,
    DisputeOpenResponse,
    DisputeResponse,
    DisputeSummary,
    GuaranteeResponse,
    PublicTransactionResponse,
    RefundResponse,
    StatusLabel,
    TimelineEventResponse,
    TransactionListResponse,
    TransactionSummaryResponse,
)
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.state_machine import is_transition_allowed

public_router = APIRouter(prefix="/escrow", tags=["escrow"])
admin_router = APIRouter(prefix="/admin/escrow", tags=["escrow-admin"])

_NON_DIGITS = re.compile(r"\D")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def mask_phone(phone: str) -> str:
    """Keep the first 3 and last 2 digits: ``221771234567`` -> ``221****67``."""
    digits = _NON_DIGITS.sub("", phone or "")
    if len(digits) < 5:
        return phone
    return f"{digits[:3]}****{digits[-2:]}"


def _verify_claimant(
    transaction: Transaction,
    user: AuthenticatedUser | None,
    phone_last4: str | None,
) -> None:
    """Allow the owner, or anyone who knows the last 4 digits of the client's phone."""
    if user is not None and transaction.user_id is not None and transaction.user_id == user.id:
        return

    expected = _NON_DIGITS.sub("", transaction.client.phone)[-4:]
    provided = _NON_DIGITS.sub("", phone_last4 or "")
    if len(expected) != 4 or len(provided) != 4 or not secrets.compare_digest(expected, provided):
        raise ForbiddenException("Verification required (last 4 digits of the phone number)")


def _to_summary(transaction: Transaction) -> TransactionSummaryResponse:
    return TransactionSummaryResponse(
        reference=transaction.reference,
        status=transaction.status,
        status_label=STATUS_LABELS[transaction.status]["label"],
        amount=transaction.amount,
        currency=transaction.currency,
        paid_amount=transaction.paid_amount,
        order_id=transaction.order_id,
        created_at=transaction.created_at,
    )


def _to_public(transaction: Transaction, now: datetime) -> PublicTransactionResponse:
    return PublicTransactionResponse(
        reference=transaction.reference,
        status=transaction.status,
        status_display=StatusLabel(**STATUS_LABELS[transaction.status]),
        amount=transaction.amount,
        currency=transaction.currency,
        paid_amount=transaction.paid_amount,
        client=ClientResponse(
            name=transaction.client.name,
            phone=mask_phone(transaction.client.phone),
        ),
        timeline=[TimelineEventResponse.model_validate(e) for e in transaction.timeline],
        guarantees=[GuaranteeResponse.model_validate(g) for g in transaction.guarantees],
        delivery=(
            DeliveryResponse.model_validate(transaction.delivery)
            if transaction.delivery else None
        ),
        dispute=(
            DisputeSummary.model_validate(transaction.dispute)
            if transaction.dispute else None
        ),
        delivered_at=transaction.delivered_at,
        verification_ends_at=transaction.verification_ends_at,
        can_open_dispute=(
            transaction.dispute is None
            and is_transition_allowed(transaction, EscrowStatus.DISPUTED, now)
        ),
        created_at=transaction.created_at,
    )


def _to_admin(transaction: Transaction, now: datetime) -> AdminTransactionResponse:
    return AdminTransactionResponse(
        reference=transaction.reference,
        status=transaction.status,
        amount=transaction.amount,
        currency=transaction.currency,
        paid_amount=transaction.paid_amount,
        client=ClientResponse(
            name=transaction.client.name,
            phone=transaction.client.phone,
            email=transaction.client.email,
        ),
        user_id=transaction.user_id,
        order_id=transaction.order_id,
        group_order_id=transaction.group_order_id,
        timeline=[AdminTimelineEventResponse.model_validate(e) for e in transaction.timeline],
        guarantees=[GuaranteeResponse.model_validate(g) for g in transaction.guarantees],
        payment_received_at=transaction.payment_received_at,
        order_placed_at=transaction.order_placed_at,
        delivered_at=transaction.delivered_at,
        verification_ends_at=transaction.verification_ends_at,
        completed_at=transaction.completed_at,
        delivery=(
            AdminDeliveryResponse.model_validate(transaction.delivery)
            if transaction.delivery else None
        ),
        dispute=(
            DisputeResponse.model_validate(transaction.dispute)
            if transaction.dispute else None
        ),
        refund=(
            RefundResponse.model_validate(transaction.refund)
            if transaction.refund else None
        ),
        allowed_next_statuses=[
            status for status in EscrowStatus
            if status != transaction.status
            and is_transition_allowed(transaction, status, now)
        ],
        created_at=transaction.created_at,
        version=transaction.version,
    )


# ---------------------------------------------------------------------------
# Public / customer endpoints
# ---------------------------------------------------------------------------


@public_router.get("", response_model=TransactionListResponse)
async def list_my_transactions(
    user: AuthenticatedUser = Depends(get_current_user),
    escrow: EscrowService = Depends(get_escrow_service),
):
    """List the authenticated user's guaranteed transactions, newest first."""
    transactions = await escrow.list_user_transactions(user.id)
    return TransactionListResponse(
        items=[_to_summary(tx) for tx in transactions],
        total=len(transactions),
    )


@public_router.get("/{reference}", response_model=PublicTransactionResponse)
async def track_transaction(
    reference: str,
    escrow: EscrowService = Depends(get_escrow_service),
):
    """Public tracking page data for a reference."""
    transaction = await escrow.get_transaction(normalize_reference(reference))
    return _to_public(transaction, escrow.clock())


@public_router.post("/{reference}/dispute", response_model=DisputeOpenResponse)
@limiter.limit(settings.dispute_rate_limit)
async def open_dispute(
    request: Request,
    reference: str,
    body: DisputeOpenRequest,
    user: AuthenticatedUser | None = Depends(get_optional_user),
    disputes: DisputeService = Depends(get_dispute_service),
):
    """Open a claim within the verification window."""
    normalized = normalize_reference(reference)
    transaction = await disputes.escrow.get_transaction(normalized)
    _verify_claimant(transaction, user, body.phone_last4)

    updated = await disputes.open_dispute(
        normalized,
        reason=body.reason,
        description=body.description,
        evidence=body.photos,
    )
    return DisputeOpenResponse(reference=updated.reference, status=updated.status)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@admin_router.get("/{reference}", response_model=AdminTransactionResponse)
async def get_transaction_admin(
    reference: str,
    _admin: AuthenticatedUser = Depends(require_admin),
    escrow: EscrowService = Depends(get_escrow_service),
):
    """Full transaction record including admin-only fields."""
    transaction = await escrow.get_transaction(normalize_reference(reference))
    return _to_admin(transaction, escrow.clock())


@admin_router.patch("/{reference}", response_model=AdminTransactionResponse)
async def update_transaction_admin(
    reference: str,
    body: AdminTransactionUpdate,
    admin: AuthenticatedUser = Depends(require_admin),
    disputes: DisputeService = Depends(get_dispute_service),
):
    """Resolve the open dispute or advance the status, notifying the client."""
    escrow = disputes.escrow
    normalized = normalize_reference(reference)

    if body.resolve_type is not None:
        transaction = await disputes.resolve_dispute(
            normalized,
            decision=body.resolve_type,
            note=body.admin_note,
            admin_id=str(admin.id),
            refund_amount=body.refund_amount,
            refund_method=body.refund_method,
        )
    else:
        delivery_info = None
        if body.tracking_number or body.carrier:
            delivery_info = DeliveryInfo(
                tracking_number=body.tracking_number,
                carrier=body.carrier,
            )
        transaction = await escrow.advance(
            normalized,
            body.status,
            note=body.note,
            admin_id=str(admin.id),
            notify_client=True,
            delivery_info=delivery_info,
        )

    return _to_admin(transaction, escrow.clock())
