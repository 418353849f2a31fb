"""Escrow service — creation, lookup and the single status-transition path."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from guarantee_engine.clock import Clock, utc_now
from guarantee_engine.config import settings
from guarantee_engine.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.constants import NOTE_CREATED
from guarantee_engine.modules.escrow.domain import (
    ClientSnapshot,
    DeliveryInfo,
    TimelineEvent,
    Transaction,
    append_event,
    mark_last_event_notified,
    merge_delivery,
    record_status_dates,
)
from guarantee_engine.modules.escrow.guarantees import default_guarantees
from guarantee_engine.modules.escrow.notifications import (
    NotificationDispatcher,
    StatusNotification,
)
from guarantee_engine.modules.escrow.reference import ReferenceGenerator
from guarantee_engine.modules.escrow.repository import TransactionFilter, TransactionStore
from guarantee_engine.modules.escrow.state_machine import validate_transition

logger = logging.getLogger(__name__)


class EscrowService:
    """Entry point for every change to a guaranteed transaction.

    The store and the notification dispatcher are injected; the service never
    opens connections itself. ``apply_transition`` is the only code path that
    changes a transaction's status.
    """

    def __init__(
        self,
        store: TransactionStore,
        dispatcher: NotificationDispatcher | None = None,
        *,
        clock: Clock = utc_now,
        reference_generator: ReferenceGenerator | None = None,
        verification_window: timedelta | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.reference_generator = reference_generator or ReferenceGenerator(clock=clock)
        self.verification_window = verification_window or timedelta(
            hours=settings.verification_window_hours
        )

    # ------------------------------------------------------------------
    # Creation & lookup
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        *,
        client: ClientSnapshot,
        amount: Decimal,
        currency: str | None = None,
        user_id: uuid.UUID | None = None,
        order_id: str | None = None,
        group_order_id: str | None = None,
    ) -> Transaction:
        """Persist a new transaction in ``pending_payment`` with the default guarantees."""
        if amount < 0:
            raise ValidationException("Amount must not be negative")

        now = self.clock()
        guarantees = default_guarantees(now)

        async def persist(reference: str) -> Transaction:
            transaction = Transaction(
                reference=reference,
                status=EscrowStatus.PENDING_PAYMENT,
                amount=amount,
                currency=currency or settings.default_currency,
                client=client,
                timeline=(
                    TimelineEvent(
                        status=EscrowStatus.PENDING_PAYMENT,
                        timestamp=now,
                        note=NOTE_CREATED,
                    ),
                ),
                guarantees=guarantees,
                user_id=user_id,
                order_id=order_id,
                group_order_id=group_order_id,
                created_at=now,
            )
            return await self.store.save(transaction)

        transaction = await self.reference_generator.allocate(persist)
        logger.info(
            "Created guaranteed transaction %s (%s %s)",
            transaction.reference, transaction.amount, transaction.currency,
        )
        return transaction

    async def find_transaction(self, reference: str) -> Transaction | None:
        return await self.store.find_by_reference(reference)

    async def get_transaction(self, reference: str) -> Transaction:
        """Get a transaction by reference. Raises NotFoundException if not found."""
        transaction = await self.store.find_by_reference(reference)
        if transaction is None:
            raise NotFoundException(f"Transaction {reference} not found")
        return transaction

    async def list_user_transactions(self, user_id: uuid.UUID) -> list[Transaction]:
        """All transactions owned by ``user_id``, newest first."""
        return await self.store.find_by_filter(TransactionFilter(user_id=user_id))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def advance(
        self,
        reference: str,
        new_status: EscrowStatus,
        *,
        note: str | None = None,
        admin_id: str | None = None,
        notify_client: bool = False,
        delivery_info: DeliveryInfo | None = None,
    ) -> Transaction:
        """Load ``reference`` and move it to ``new_status``."""
        transaction = await self.get_transaction(reference)
        return await self.apply_transition(
            transaction,
            new_status,
            note=note,
            admin_id=admin_id,
            notify_client=notify_client,
            delivery_info=delivery_info,
        )

    async def apply_transition(
        self,
        transaction: Transaction,
        new_status: EscrowStatus,
        *,
        note: str | None = None,
        admin_id: str | None = None,
        notify_client: bool = False,
        delivery_info: DeliveryInfo | None = None,
    ) -> Transaction:
        """Validate, record and persist a transition on an already-loaded snapshot.

        Raises InvalidTransitionException (or a dispute precondition error)
        before anything is written, and ConflictException when the snapshot is
        stale. Notification happens after the save and never raises.
        """
        now = self.clock()
        previous_status = transaction.status
        validate_transition(transaction, new_status, now)

        updated = append_event(
            transaction,
            TimelineEvent(status=new_status, timestamp=now, note=note, admin_id=admin_id),
        )
        updated = record_status_dates(updated, new_status, now, self.verification_window)
        if delivery_info is not None:
            updated = merge_delivery(updated, delivery_info)

        saved = await self.store.save(updated)
        logger.info(
            "Transaction %s moved %s -> %s",
            saved.reference, previous_status.value, new_status.value,
        )

        if notify_client and saved.client.email:
            saved = await self._notify(saved, previous_status, new_status)
        return saved

    async def _notify(
        self,
        transaction: Transaction,
        previous_status: EscrowStatus,
        new_status: EscrowStatus,
    ) -> Transaction:
        """Dispatch a status notification; flag the event only on confirmed delivery."""
        if self.dispatcher is None:
            return transaction

        notification = StatusNotification(transaction, previous_status, new_status)
        try:
            delivered = await self.dispatcher.dispatch(notification)
        except Exception:
            logger.exception("Notification for %s failed", transaction.reference)
            return transaction

        if not delivered:
            # Queued or declined; whoever performs the send records the flag
            logger.debug("Notification for %s not confirmed at dispatch", transaction.reference)
            return transaction

        try:
            return await self.store.save(mark_last_event_notified(transaction))
        except ConflictException:
            # Another writer got there first; the flag stays false for a later retry
            logger.warning(
                "Could not record notification flag for %s: concurrent update",
                transaction.reference,
            )
            return transaction
