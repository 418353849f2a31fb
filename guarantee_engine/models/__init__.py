# Import all models so SQLAlchemy metadata is populated for Alembic and create_all
from guarantee_engine.models.enums import (
    DisputeDecision,
    EscrowStatus,
    EventStatus,
    GuaranteeType,
    RefundMethod,
)
from guarantee_engine.models.event_outbox import EventOutbox
from guarantee_engine.models.guaranteed_transaction import GuaranteedTransaction

__all__ = [
    "DisputeDecision",
    "EscrowStatus",
    "EventOutbox",
    "EventStatus",
    "GuaranteeType",
    "GuaranteedTransaction",
    "RefundMethod",
]
