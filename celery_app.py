"""Celery application configuration for guarantee engine background tasks."""

from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger

from guarantee_engine.config import settings

celery = Celery("guarantee_engine")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # --- Queue routing per job type ---
    task_routes={
        "guarantee_engine.modules.escrow.tasks.*": {"queue": "escrow"},
        "guarantee_engine.modules.events.tasks.*": {"queue": "event-outbox"},
    },
    # --- Reliability settings ---
    task_default_retry_delay=60,
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    # --- Broker transport options (Redis reliability) ---
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    # --- Beat schedule ---
    beat_schedule={
        "escrow-auto-complete-verified": {
            "task": "guarantee_engine.modules.escrow.tasks.auto_complete_verified_transactions",
            "schedule": settings.escrow_sweep_poll_seconds,
        },
        "process-event-outbox": {
            "task": "guarantee_engine.modules.events.tasks.process_outbox",
            "schedule": settings.event_outbox_poll_seconds,
        },
        "cleanup-processed-events-daily": {
            "task": "guarantee_engine.modules.events.tasks.cleanup_processed_events",
            "schedule": crontab(hour=3, minute=30),
        },
    },
)


@after_setup_logger.connect
def _apply_log_level(logger, *args, **kwargs):
    logger.setLevel(settings.log_level.upper())


celery.autodiscover_tasks([
    "guarantee_engine.modules.escrow",
    "guarantee_engine.modules.events",
])
