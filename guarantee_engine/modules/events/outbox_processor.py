"""OutboxProcessor — batch processor run by Celery workers."""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from guarantee_engine.config import settings
from guarantee_engine.modules.events.handlers import EventHandlerRegistry
from guarantee_engine.modules.events.outbox_service import OutboxService

logger = logging.getLogger(__name__)


class OutboxProcessor:
    """Hands pending outbox events to their registered handlers.

    Rows are fetched with SELECT ... FOR UPDATE SKIP LOCKED so several workers
    can drain the outbox concurrently. The whole batch commits once; a crash
    mid-batch leaves every event PENDING for the next run.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self.session_factory = session_factory

    async def process_batch(self, batch_size: int | None = None) -> dict:
        """Process one batch. Returns dict with 'processed' and 'failed' counts."""
        processed_count = 0
        failed_count = 0

        async with self.session_factory() as session:
            outbox = OutboxService(session)
            events = await outbox.get_pending_events(
                batch_size or settings.event_outbox_batch_size
            )

            for event in events:
                results = await EventHandlerRegistry.dispatch(event.event_type, event.payload)
                handler_errors = [r for r in results if r["status"] == "error"]

                if handler_errors:
                    error_messages = "; ".join(
                        f"{r['handler']}: {r['error']}" for r in handler_errors
                    )
                    await outbox.mark_failed(event, f"Handler errors: {error_messages}")
                    logger.warning(
                        "Event %s (type=%s) failed, attempt %d/%d",
                        event.id, event.event_type, event.retry_count, event.max_retries,
                    )
                    failed_count += 1
                else:
                    await outbox.mark_completed(event)
                    processed_count += 1

            await session.commit()

        return {"processed": processed_count, "failed": failed_count}

    async def cleanup_expired(self) -> int:
        """Delete completed outbox events older than 30 days."""
        async with self.session_factory() as session:
            deleted = await OutboxService(session).purge_completed()
            await session.commit()

        logger.info("Cleaned up %d expired event records", deleted)
        return deleted
