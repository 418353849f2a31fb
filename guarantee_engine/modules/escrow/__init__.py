"""Escrow module — guaranteed-transaction state machine, disputes and reconciliation."""

from guarantee_engine.modules.escrow.dispute_service import DisputeService
from guarantee_engine.modules.escrow.domain import (
    ClientSnapshot,
    DeliveryInfo,
    Dispute,
    Guarantee,
    Refund,
    TimelineEvent,
    Transaction,
)
from guarantee_engine.modules.escrow.repository import (
    InMemoryTransactionStore,
    TransactionFilter,
    TransactionStore,
)
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sweeper import ReconciliationSweeper, SweepReport

__all__ = [
    "ClientSnapshot",
    "DeliveryInfo",
    "Dispute",
    "DisputeService",
    "EscrowService",
    "Guarantee",
    "InMemoryTransactionStore",
    "ReconciliationSweeper",
    "Refund",
    "SweepReport",
    "TimelineEvent",
    "Transaction",
    "TransactionFilter",
    "TransactionStore",
]
