"""Transition rules for guaranteed transactions.

Rules are evaluated in order for a move from ``previous`` to ``next``:

1. ``previous == next`` is always allowed (idempotent re-application).
2. ``refunded`` and ``cancelled`` are absorbing: every other move is rejected.
3. A completed sale can be neither cancelled nor disputed.
4. On the main flow a move may skip forward but never go back.
5. Entering ``disputed`` needs a recorded delivery and an open claim window.
6. Anything else is allowed (exits to ``refunded``/``cancelled``, exits from
   ``disputed``).
"""

from __future__ import annotations

from datetime import datetime

from guarantee_engine.exceptions import (
    DeliveryNotRecordedException,
    DisputeWindowExpiredException,
    InvalidTransitionException,
)
from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.constants import (
    COMPLETION_LOCKED_TARGETS,
    MAIN_FLOW_INDEX,
    TERMINAL_STATUSES,
)
from guarantee_engine.modules.escrow.domain import Transaction


def validate_transition(
    transaction: Transaction,
    next_status: EscrowStatus,
    now: datetime,
) -> None:
    """Raise unless ``transaction`` may move to ``next_status`` at ``now``."""
    previous = transaction.status

    if previous == next_status:
        return

    if previous in TERMINAL_STATUSES:
        raise InvalidTransitionException(
            previous.value, next_status.value, f"'{previous.value}' is a terminal status"
        )

    if previous == EscrowStatus.COMPLETED and next_status in COMPLETION_LOCKED_TARGETS:
        raise InvalidTransitionException(
            previous.value, next_status.value, "a completed transaction is locked"
        )

    previous_index = MAIN_FLOW_INDEX.get(previous)
    next_index = MAIN_FLOW_INDEX.get(next_status)
    if previous_index is not None and next_index is not None:
        if next_index < previous_index:
            raise InvalidTransitionException(
                previous.value, next_status.value, "backward moves on the main flow are not allowed"
            )
        return

    if next_status == EscrowStatus.DISPUTED:
        if transaction.delivered_at is None:
            raise DeliveryNotRecordedException(
                f"Transaction {transaction.reference} cannot be disputed before delivery"
            )
        if transaction.verification_ends_at is not None and now > transaction.verification_ends_at:
            raise DisputeWindowExpiredException(
                f"The claim window for {transaction.reference} closed at "
                f"{transaction.verification_ends_at.isoformat()}"
            )


def is_transition_allowed(
    transaction: Transaction,
    next_status: EscrowStatus,
    now: datetime,
) -> bool:
    """Boolean form of ``validate_transition`` for UI hints and filters."""
    try:
        validate_transition(transaction, next_status, now)
    except (
        InvalidTransitionException,
        DeliveryNotRecordedException,
        DisputeWindowExpiredException,
    ):
        return False
    return True
