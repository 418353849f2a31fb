"""Shared fixtures for guarantee engine tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from guarantee_engine.modules.escrow.dispute_service import DisputeService
from guarantee_engine.modules.escrow.repository import InMemoryTransactionStore
from guarantee_engine.modules.escrow.service import EscrowService
from guarantee_engine.modules.escrow.sweeper import ReconciliationSweeper
from tests.factories import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def dispatcher() -> AsyncMock:
    mock = AsyncMock()
    mock.dispatch.return_value = True
    return mock


@pytest.fixture
def escrow(store, dispatcher, clock) -> EscrowService:
    return EscrowService(store, dispatcher, clock=clock)


@pytest.fixture
def disputes(escrow) -> DisputeService:
    return DisputeService(escrow)


@pytest.fixture
def sweeper(escrow) -> ReconciliationSweeper:
    return ReconciliationSweeper(escrow)
