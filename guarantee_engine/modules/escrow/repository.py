"""Transaction store contract and the in-memory implementation."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol

from guarantee_engine.exceptions import ConflictException, DuplicateReferenceException
from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.domain import Transaction

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class TransactionFilter:
    """Selection criteria understood by every store. Unset fields do not filter."""

    statuses: tuple[EscrowStatus, ...] | None = None
    user_id: uuid.UUID | None = None
    verification_ended_before: datetime | None = None
    without_dispute: bool = False

    def matches(self, transaction: Transaction) -> bool:
        if self.statuses is not None and transaction.status not in self.statuses:
            return False
        if self.user_id is not None and transaction.user_id != self.user_id:
            return False
        if self.verification_ended_before is not None:
            ends_at = transaction.verification_ends_at
            if ends_at is None or not ends_at < self.verification_ended_before:
                return False
        if self.without_dispute and transaction.dispute is not None:
            return False
        return True


class TransactionStore(Protocol):
    """Persistence boundary for the transaction aggregate.

    ``save`` is a compare-and-swap on ``Transaction.version``: a snapshot with
    version 0 is inserted (DuplicateReferenceException if the reference
    exists), any other snapshot only replaces the stored one when versions
    match (ConflictException otherwise). The returned snapshot carries the new
    version.

    ``savepoint`` scopes a unit of work: if the block raises, every save made
    inside it is undone and earlier work is kept.
    """

    async def find_by_reference(self, reference: str) -> Transaction | None: ...

    async def find_by_filter(self, criteria: TransactionFilter) -> list[Transaction]: ...

    async def save(self, transaction: Transaction) -> Transaction: ...

    def savepoint(self) -> AbstractAsyncContextManager: ...


class InMemoryTransactionStore:
    """Dict-backed store for tests, local runs and scripted reconciliation."""

    def __init__(self) -> None:
        self._documents: dict[str, Transaction] = {}

    async def find_by_reference(self, reference: str) -> Transaction | None:
        return self._documents.get(reference)

    async def find_by_filter(self, criteria: TransactionFilter) -> list[Transaction]:
        matches = [tx for tx in self._documents.values() if criteria.matches(tx)]
        # Newest first, by creation then reference for stable ordering
        matches.sort(key=lambda tx: (tx.created_at or _EPOCH, tx.reference), reverse=True)
        return matches

    async def save(self, transaction: Transaction) -> Transaction:
        stored = self._documents.get(transaction.reference)

        if transaction.version == 0:
            if stored is not None:
                raise DuplicateReferenceException(
                    f"Reference {transaction.reference} already exists"
                )
        elif stored is None or stored.version != transaction.version:
            raise ConflictException(
                f"Transaction {transaction.reference} was modified concurrently"
            )

        saved = replace(transaction, version=transaction.version + 1)
        self._documents[transaction.reference] = saved
        return saved

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        snapshot = dict(self._documents)
        try:
            yield
        except BaseException:
            self._documents = snapshot
            raise

    def __len__(self) -> int:
        return len(self._documents)
