"""Unit tests for the reconciliation sweeper."""

from __future__ import annotations

from datetime import timedelta

import pytest

from guarantee_engine.models.enums import EscrowStatus
from guarantee_engine.modules.escrow.domain import Dispute
from guarantee_engine.modules.escrow.repository import InMemoryTransactionStore
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sweeper import ReconciliationSweeper, SweepReport
from tests.factories import T0, make_transaction

WINDOW = timedelta(hours=48)


def _awaiting(reference: str, status=EscrowStatus.DELIVERED, delivered_at=T0, **fields):
    return make_transaction(
        status,
        reference=reference,
        delivered_at=delivered_at,
        verification_ends_at=delivered_at + WINDOW,
        **fields,
    )


class _FlakyStore(InMemoryTransactionStore):
    """Fails every save for one reference."""

    def __init__(self, failing_reference: str) -> None:
        super().__init__()
        self.failing_reference = failing_reference
        self.armed = False

    async def save(self, transaction):
        if self.armed and transaction.reference == self.failing_reference:
            raise RuntimeError("write timeout")
        return await super().save(transaction)


class _PartialWriteStore(InMemoryTransactionStore):
    """Stores the completion of one reference, then fails before returning."""

    def __init__(self, failing_reference: str) -> None:
        super().__init__()
        self.failing_reference = failing_reference

    async def save(self, transaction):
        saved = await super().save(transaction)
        if (
            transaction.reference == self.failing_reference
            and transaction.status == EscrowStatus.COMPLETED
        ):
            raise RuntimeError("lost connection")
        return saved


class TestSweep:
    @pytest.mark.asyncio
    async def test_completes_only_lapsed_undisputed_candidates(self, sweeper, store, clock):
        await store.save(_awaiting("GAR-2603-LAPSED"))
        await store.save(_awaiting("GAR-2603-VERIFY", status=EscrowStatus.VERIFICATION))
        await store.save(_awaiting("GAR-2603-RECENT", delivered_at=T0 + timedelta(hours=10)))
        await store.save(
            _awaiting(
                "GAR-2603-DISPUT",
                dispute=Dispute(opened_at=T0 + timedelta(hours=1), reason="x", description="y"),
            )
        )
        await store.save(make_transaction(EscrowStatus.IN_TRANSIT, reference="GAR-2603-TRANSI"))
        clock.advance(timedelta(hours=49))

        report = await sweeper.run()

        assert report.checked == 2
        assert sorted(report.completed) == ["GAR-2603-LAPSED", "GAR-2603-VERIFY"]
        assert report.failures == {}
        for reference in ("GAR-2603-LAPSED", "GAR-2603-VERIFY"):
            tx = await store.find_by_reference(reference)
            assert tx.status == EscrowStatus.COMPLETED
            assert tx.completed_at == clock.now
        assert (await store.find_by_reference("GAR-2603-RECENT")).status == EscrowStatus.DELIVERED
        assert (await store.find_by_reference("GAR-2603-DISPUT")).status == EscrowStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_window_end_is_exclusive(self, sweeper, store, clock):
        await store.save(_awaiting("GAR-2603-EDGE00"))
        clock.advance(WINDOW)

        report = await sweeper.run()

        assert report.checked == 0

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, sweeper, store, clock):
        await store.save(_awaiting("GAR-2603-LAPSED"))
        clock.advance(timedelta(hours=49))

        first = await sweeper.run()
        snapshot = await store.find_by_reference("GAR-2603-LAPSED")
        second = await sweeper.run()

        assert len(first.completed) == 1
        assert second == SweepReport()
        assert await store.find_by_reference("GAR-2603-LAPSED") == snapshot

    @pytest.mark.asyncio
    async def test_notifies_client_on_completion(self, sweeper, store, clock, dispatcher):
        await store.save(_awaiting("GAR-2603-LAPSED"))
        clock.advance(timedelta(hours=49))

        await sweeper.run()

        notification = dispatcher.dispatch.await_args.args[0]
        assert notification.new_status == EscrowStatus.COMPLETED
        assert (await store.find_by_reference("GAR-2603-LAPSED")).last_event.notified_client

    @pytest.mark.asyncio
    async def test_failure_on_one_item_does_not_abort_batch(self, dispatcher, clock):
        store = _FlakyStore("GAR-2603-BROKEN")
        await store.save(_awaiting("GAR-2603-BROKEN"))
        await store.save(_awaiting("GAR-2603-HEALTH"))
        store.armed = True
        sweeper = ReconciliationSweeper(EscrowService(store, dispatcher, clock=clock))
        clock.advance(timedelta(hours=49))

        report = await sweeper.run()

        assert report.checked == 2
        assert report.completed == ["GAR-2603-HEALTH"]
        assert report.failures == {"GAR-2603-BROKEN": "write timeout"}
        assert report.as_dict() == {"checked": 2, "completed": 1, "errors": 1}
        assert (await store.find_by_reference("GAR-2603-BROKEN")).status == EscrowStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_partial_write_of_failed_item_is_rolled_back(self, dispatcher, clock):
        store = _PartialWriteStore("GAR-2603-BROKEN")
        before = await store.save(_awaiting("GAR-2603-BROKEN"))
        await store.save(_awaiting("GAR-2603-HEALTH"))
        sweeper = ReconciliationSweeper(EscrowService(store, dispatcher, clock=clock))
        clock.advance(timedelta(hours=49))

        report = await sweeper.run()

        assert report.completed == ["GAR-2603-HEALTH"]
        assert report.failures == {"GAR-2603-BROKEN": "lost connection"}
        assert await store.find_by_reference("GAR-2603-BROKEN") == before
        healthy = await store.find_by_reference("GAR-2603-HEALTH")
        assert healthy.status == EscrowStatus.COMPLETED
