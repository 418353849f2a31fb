"""OutboxService — async service for publishing and managing outbox events."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from guarantee_engine.models.enums import EventStatus
from guarantee_engine.models.event_outbox import EventOutbox


class OutboxService:
    """Manages the event outbox lifecycle (publish, fetch, mark, purge).

    Writes go through the caller's session so an event commits or rolls back
    together with the aggregate change that produced it.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def publish_event(
        self,
        event_type: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict,
    ) -> EventOutbox:
        event = EventOutbox(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=EventStatus.PENDING,
            retry_count=0,
            max_retries=3,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_pending_events(self, batch_size: int = 50) -> list[EventOutbox]:
        """Oldest pending events first; rows locked by another worker are skipped."""
        statement = (
            select(EventOutbox)
            .where(EventOutbox.status == EventStatus.PENDING)
            .order_by(EventOutbox.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def mark_completed(self, event: EventOutbox) -> None:
        event.status = EventStatus.COMPLETED
        event.processed_at = datetime.now(UTC)
        await self.session.flush()

    async def mark_failed(self, event: EventOutbox, error: str) -> None:
        """Record the error and either requeue the event or give up on it.

        Once retry_count reaches max_retries the event is parked as FAILED.
        """
        event.retry_count += 1
        event.last_error = error
        event.status = (
            EventStatus.FAILED
            if event.retry_count >= event.max_retries
            else EventStatus.PENDING
        )
        await self.session.flush()

    async def purge_completed(self, older_than: timedelta = timedelta(days=30)) -> int:
        """Delete completed events processed before ``now - older_than``."""
        cutoff = datetime.now(UTC) - older_than
        result = await self.session.execute(
            delete(EventOutbox).where(
                EventOutbox.status == EventStatus.COMPLETED,
                EventOutbox.processed_at < cutoff,
            )
        )
        return result.rowcount
