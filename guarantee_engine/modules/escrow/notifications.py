"""Status-change notifications for guaranteed transactions.

The engine only decides that a notification fires and which status it
reports. Rendering and transport belong to whatever handler is registered
for ``escrow.status_changed`` on the event outbox.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from guarantee_engine.config import settings
from guarantee_engine.database.engine import async_session
from guarantee_engine.exceptions import ConflictException
from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.constants import (
    AGGREGATE_TYPE,
    EVENT_ESCROW_STATUS_CHANGED,
    STATUS_LABELS,
)
from guarantee_engine.modules.escrow.domain import Transaction, mark_event_notified
from guarantee_engine.modules.escrow.sql_repository import SqlTransactionStore
from guarantee_engine.modules.events.handlers import EventHandlerRegistry
from guarantee_engine.modules.events.outbox_service import OutboxService

logger = logging.getLogger(__name__)

# Reload-and-save attempts when flagging a delivered notification
_FLAG_ATTEMPTS = 3


def tracking_url(reference: str) -> str:
    return f"{settings.site_url.rstrip('/')}/suivi/{reference}"


@dataclass(frozen=True, slots=True)
class StatusNotification:
    transaction: Transaction
    previous_status: EscrowStatus
    new_status: EscrowStatus

    def payload(self) -> dict:
        """JSON-safe body handed to the delivery collaborator."""
        tx = self.transaction
        labels = STATUS_LABELS[self.new_status]
        return {
            "reference": tx.reference,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "status_label": labels["label"],
            "status_description": labels["description"],
            "status_icon": labels["icon"],
            "client_name": tx.client.name,
            "client_email": tx.client.email,
            "amount": str(tx.amount),
            "currency": tx.currency,
            "note": tx.last_event.note,
            "tracking_url": tracking_url(tx.reference),
            "event_index": len(tx.timeline) - 1,
        }


class NotificationDispatcher(Protocol):
    """Best-effort delivery of a status notification.

    Returns True only when the client has been notified by the time the call
    returns; the caller then flips ``notified_client`` itself. A dispatcher
    that defers delivery returns False and leaves the flag to whatever
    performs the send. Callers treat a raised exception as "not notified".
    """

    async def dispatch(self, notification: StatusNotification) -> bool: ...


class OutboxNotificationDispatcher:
    """Queues notifications on the transactional outbox.

    The event shares the caller's session, so it is only published if the
    status change it describes commits. Nothing has been sent yet when
    ``dispatch`` returns, so it always returns False;
    ``deliver_status_notification`` records the flag after the send.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.outbox = OutboxService(session)

    async def dispatch(self, notification: StatusNotification) -> bool:
        if not notification.transaction.client.email:
            return False
        await self.outbox.publish_event(
            event_type=EVENT_ESCROW_STATUS_CHANGED,
            aggregate_type=AGGREGATE_TYPE,
            aggregate_id=notification.transaction.reference,
            payload=notification.payload(),
        )
        return False


def log_status_notification(payload: dict) -> None:
    """Default sender: record the notification until an email transport is wired in."""
    logger.info(
        "Status notification for %s: %s -> %s (%s)",
        payload["reference"],
        payload["previous_status"],
        payload["new_status"],
        payload["client_email"],
    )


async def record_client_notified(payload: dict) -> bool:
    """Flip ``notified_client`` on the timeline event the payload was built for.

    Retries on concurrent updates; returns False when the event cannot be
    flagged.
    """
    reference = payload["reference"]
    index = payload["event_index"]

    async with async_session() as session:
        store = SqlTransactionStore(session)
        for _ in range(_FLAG_ATTEMPTS):
            transaction = await store.find_by_reference(reference)
            if transaction is None or index >= len(transaction.timeline):
                logger.warning("No timeline event %d on %s to flag as notified", index, reference)
                return False

            event = transaction.timeline[index]
            if event.status.value != payload["new_status"]:
                logger.warning(
                    "Timeline event %d on %s is %s, expected %s",
                    index, reference, event.status.value, payload["new_status"],
                )
                return False
            if event.notified_client:
                return True

            try:
                await store.save(mark_event_notified(transaction, index))
            except ConflictException:
                continue
            await session.commit()
            return True

    logger.warning("Could not flag %s as notified: concurrent updates", reference)
    return False


async def deliver_status_notification(payload: dict) -> None:
    """Outbox handler for ``escrow.status_changed``.

    Sends first and records the flag only once the send returned. A send
    failure propagates, so the outbox keeps the event for a retry and the
    flag stays false.
    """
    log_status_notification(payload)
    await record_client_notified(payload)


def register_notification_handlers() -> None:
    EventHandlerRegistry.register(EVENT_ESCROW_STATUS_CHANGED, deliver_status_notification)
