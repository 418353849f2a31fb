"""Celery tasks for event outbox processing."""

import asyncio

from celery_app import celery
from guarantee_engine.database.engine import async_session
from guarantee_engine.modules.escrow.notifications import register_notification_handlers
from guarantee_engine.modules.events.outbox_processor import OutboxProcessor

register_notification_handlers()


@celery.task(name="guarantee_engine.modules.events.tasks.process_outbox")
def process_outbox():
    """Process a batch of pending outbox events."""
    processor = OutboxProcessor(async_session)
    return asyncio.run(processor.process_batch())


@celery.task(name="guarantee_engine.modules.events.tasks.cleanup_processed_events")
def cleanup_processed_events():
    """Delete old completed outbox entries."""
    processor = OutboxProcessor(async_session)
    return asyncio.run(processor.cleanup_expired())
