"""Integration tests for SqlTransactionStore against SQLite (aiosqlite)."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import guarantee_engine.models  # noqa: F401
from guarantee_engine.database.base import Base
from guarantee_engine.exceptions import ConflictException, DuplicateReferenceException
from guarantee_engine.models.enums import DisputeDecision, EscrowStatus, EventStatus
from guarantee_engine.models.event_outbox import EventOutbox
from guarantee_engine.modules.escrow.constants import EVENT_ESCROW_STATUS_CHANGED
from guarantee_engine.modules.escrow.dispute_service import DisputeService
from guarantee_engine.modules.escrow.domain import DeliveryInfo
from guarantee_engine.modules.escrow.notifications import OutboxNotificationDispatcher
from guarantee_engine.modules.escrow.repository import TransactionFilter
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sql_repository import SqlTransactionStore
from guarantee_engine.modules.escrow.sweeper import ReconciliationSweeper
from tests.factories import T0, FrozenClock, make_client, make_transaction

TEST_DATABASE_URL = "sqlite+aiosqlite://"
WINDOW = timedelta(hours=48)


@pytest_asyncio.fixture
async def async_test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def async_test_session(async_test_engine):
    session_factory = async_sessionmaker(
        async_test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def sql_store(async_test_session) -> SqlTransactionStore:
    return SqlTransactionStore(async_test_session)


class TestSqlSave:
    @pytest.mark.asyncio
    async def test_insert_and_read_back(self, sql_store):
        tx = make_transaction(
            EscrowStatus.IN_TRANSIT,
            user_id=uuid.uuid4(),
            order_id="CMD-9",
            delivery=DeliveryInfo(carrier="DHL", estimated_date=T0 + timedelta(days=3)),
        )

        saved = await sql_store.save(tx)
        loaded = await sql_store.find_by_reference(tx.reference)

        assert saved.version == 1
        assert loaded == tx
        assert loaded.version == 1
        assert loaded.amount == Decimal("50000")
        assert loaded.timeline[0].timestamp == T0
        assert loaded.delivery.estimated_date == T0 + timedelta(days=3)

    @pytest.mark.asyncio
    async def test_missing_reference(self, sql_store):
        assert await sql_store.find_by_reference("GAR-0000-NOPE00") is None

    @pytest.mark.asyncio
    async def test_duplicate_reference(self, sql_store):
        await sql_store.save(make_transaction())

        with pytest.raises(DuplicateReferenceException):
            await sql_store.save(make_transaction())

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, sql_store):
        saved = await sql_store.save(make_transaction())

        updated = await sql_store.save(replace(saved, currency="XOF"))
        assert updated.version == 2

        with pytest.raises(ConflictException):
            await sql_store.save(replace(saved, currency="EUR"))

        loaded = await sql_store.find_by_reference(saved.reference)
        assert loaded.currency == "XOF"
        assert loaded.version == 2


class TestSqlFilter:
    @pytest.mark.asyncio
    async def test_sweeper_filter_pushed_down(self, sql_store):
        await sql_store.save(
            make_transaction(
                EscrowStatus.DELIVERED,
                reference="GAR-2603-LAPSED",
                delivered_at=T0,
                verification_ends_at=T0 + WINDOW,
            )
        )
        await sql_store.save(
            make_transaction(
                EscrowStatus.DELIVERED,
                reference="GAR-2603-RECENT",
                delivered_at=T0 + timedelta(hours=10),
                verification_ends_at=T0 + timedelta(hours=58),
            )
        )
        await sql_store.save(make_transaction(EscrowStatus.IN_TRANSIT, reference="GAR-2603-TRANSI"))

        result = await sql_store.find_by_filter(
            TransactionFilter(
                statuses=(EscrowStatus.DELIVERED, EscrowStatus.VERIFICATION),
                verification_ended_before=T0 + timedelta(hours=49),
                without_dispute=True,
            )
        )

        assert [tx.reference for tx in result] == ["GAR-2603-LAPSED"]

    @pytest.mark.asyncio
    async def test_user_filter_newest_first(self, sql_store):
        owner = uuid.uuid4()
        await sql_store.save(make_transaction(reference="GAR-2603-OLD000", user_id=owner, at=T0))
        await sql_store.save(
            make_transaction(
                reference="GAR-2603-NEW000", user_id=owner, at=T0 + timedelta(hours=1)
            )
        )
        await sql_store.save(make_transaction(reference="GAR-2603-OTHER0", user_id=uuid.uuid4()))

        result = await sql_store.find_by_filter(TransactionFilter(user_id=owner))

        assert [tx.reference for tx in result] == ["GAR-2603-NEW000", "GAR-2603-OLD000"]


class TestSqlLifecycle:
    @pytest.mark.asyncio
    async def test_dispute_and_refund_round_trip_with_outbox(self, async_test_session):
        clock = FrozenClock()
        escrow = EscrowService(
            SqlTransactionStore(async_test_session),
            OutboxNotificationDispatcher(async_test_session),
            clock=clock,
        )
        disputes = DisputeService(escrow)

        tx = await escrow.create_transaction(client=make_client(), amount=Decimal("50000"))
        await escrow.advance(tx.reference, EscrowStatus.PAYMENT_RECEIVED)
        await escrow.advance(tx.reference, EscrowStatus.DELIVERED, notify_client=True)
        clock.advance(timedelta(hours=12))
        await disputes.open_dispute(
            tx.reference, reason="Wrong size", description="Ordered M, got XL", evidence=["a.jpg"]
        )
        result = await disputes.resolve_dispute(
            tx.reference, decision=DisputeDecision.REFUND_FULL, note="Refunded via Wave"
        )

        loaded = await escrow.get_transaction(tx.reference)
        assert loaded == result
        assert loaded.status == EscrowStatus.REFUNDED
        assert loaded.refund.amount == Decimal("50000")
        assert loaded.dispute.evidence == ("a.jpg",)
        assert loaded.dispute.decision == DisputeDecision.REFUND_FULL
        assert [e.status for e in loaded.timeline] == [
            EscrowStatus.PENDING_PAYMENT,
            EscrowStatus.PAYMENT_RECEIVED,
            EscrowStatus.DELIVERED,
            EscrowStatus.DISPUTED,
            EscrowStatus.REFUNDED,
        ]
        # Queued on the outbox, not yet sent
        assert not any(e.notified_client for e in loaded.timeline)

        events = (
            await async_test_session.execute(
                select(EventOutbox).order_by(EventOutbox.created_at)
            )
        ).scalars().all()
        assert len(events) == 3
        assert all(e.event_type == EVENT_ESCROW_STATUS_CHANGED for e in events)
        assert all(e.status == EventStatus.PENDING for e in events)
        assert {e.payload["new_status"] for e in events} == {"delivered", "disputed", "refunded"}
        assert events[0].aggregate_id == tx.reference

    @pytest.mark.asyncio
    async def test_sweeper_over_sql_store_is_idempotent(self, async_test_session):
        clock = FrozenClock()
        escrow = EscrowService(SqlTransactionStore(async_test_session), clock=clock)
        tx = await escrow.create_transaction(client=make_client(), amount=Decimal("1000"))
        await escrow.advance(tx.reference, EscrowStatus.DELIVERED)
        clock.advance(timedelta(hours=49))
        sweeper = ReconciliationSweeper(escrow)

        first = await sweeper.run()
        second = await sweeper.run()

        assert first.completed == [tx.reference]
        assert second.checked == 0
        assert (await escrow.get_transaction(tx.reference)).status == EscrowStatus.COMPLETED


class _PartialWriteStore(SqlTransactionStore):
    """Writes the completion of one reference, then fails before returning."""

    failing_reference = "GAR-2603-BROKEN"

    async def save(self, transaction):
        saved = await super().save(transaction)
        if (
            transaction.reference == self.failing_reference
            and transaction.status == EscrowStatus.COMPLETED
        ):
            raise RuntimeError("connection reset")
        return saved


class TestSqlIsolation:
    @pytest.mark.asyncio
    async def test_lost_insert_race_leaves_session_usable(self, sql_store, async_test_session):
        await sql_store.save(make_transaction())

        # A concurrent writer inserted between the existence check and the insert
        with patch.object(sql_store, "_reference_taken", AsyncMock(return_value=False)):
            with pytest.raises(DuplicateReferenceException):
                await sql_store.save(make_transaction(amount=Decimal("1")))

        saved = await sql_store.save(make_transaction(reference="GAR-2603-NEXT00"))
        await async_test_session.commit()

        assert saved.version == 1
        assert (await sql_store.find_by_reference("GAR-2603-ABC123")).amount == Decimal("50000")
        assert (await sql_store.find_by_reference("GAR-2603-NEXT00")) is not None

    @pytest.mark.asyncio
    async def test_allocation_retries_after_lost_race(self, async_test_session):
        store = SqlTransactionStore(async_test_session)
        await store.save(make_transaction(reference="GAR-2603-TAKEN0"))
        escrow = EscrowService(store, clock=FrozenClock())
        escrow.reference_generator.generate = MagicMock(
            side_effect=["GAR-2603-TAKEN0", "GAR-2603-FRESH0"]
        )

        with patch.object(store, "_reference_taken", AsyncMock(return_value=False)):
            tx = await escrow.create_transaction(client=make_client(), amount=Decimal("100"))
        await async_test_session.commit()

        assert tx.reference == "GAR-2603-FRESH0"
        assert (await escrow.get_transaction("GAR-2603-FRESH0")).amount == Decimal("100")

    @pytest.mark.asyncio
    async def test_sweeper_rolls_back_only_the_failed_candidate(self, async_test_session):
        store = _PartialWriteStore(async_test_session)
        for reference in ("GAR-2603-BROKEN", "GAR-2603-HEALTH"):
            await store.save(
                make_transaction(
                    EscrowStatus.DELIVERED,
                    reference=reference,
                    delivered_at=T0,
                    verification_ends_at=T0 + WINDOW,
                )
            )
        await async_test_session.commit()
        escrow = EscrowService(store, clock=FrozenClock(T0 + timedelta(hours=49)))

        report = await ReconciliationSweeper(escrow).run()
        await async_test_session.commit()

        assert report.completed == ["GAR-2603-HEALTH"]
        assert report.failures == {"GAR-2603-BROKEN": "connection reset"}
        broken = await store.find_by_reference("GAR-2603-BROKEN")
        assert broken.status == EscrowStatus.DELIVERED
        assert broken.version == 1
        assert len(broken.timeline) == 1
        healthy = await store.find_by_reference("GAR-2603-HEALTH")
        assert healthy.status == EscrowStatus.COMPLETED
        assert healthy.completed_at == T0 + timedelta(hours=49)
