"""Unit tests for reference generation and allocation."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from guarantee_engine.config import settings
from guarantee_engine.exceptions import (
    DuplicateReferenceException,
    ReferenceAllocationException,
)
from guarantee_engine.modules.escrow.reference import (
    REFERENCE_PATTERN,
    ReferenceGenerator,
    normalize_reference,
)
from tests.factories import FrozenClock


class TestGenerate:
    def test_ten_thousand_references_are_unique_and_well_formed(self):
        generator = ReferenceGenerator()

        references = [generator.generate() for _ in range(10_000)]

        assert len(set(references)) == len(references)
        assert all(REFERENCE_PATTERN.match(ref) for ref in references)

    def test_prefix_uses_clock_year_and_month(self):
        generator = ReferenceGenerator(clock=FrozenClock(datetime(2027, 1, 31, tzinfo=UTC)))
        assert generator.generate().startswith("GAR-2701-")


class TestAllocate:
    @pytest.mark.asyncio
    async def test_returns_first_accepted_result(self):
        generator = ReferenceGenerator(max_attempts=5)
        persist = AsyncMock(side_effect=lambda ref: f"saved:{ref}")

        result = await generator.allocate(persist)

        assert result.startswith("saved:GAR-")
        persist.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_with_fresh_reference_on_collision(self):
        generator = ReferenceGenerator(max_attempts=5)
        seen: list[str] = []

        async def persist(reference: str) -> str:
            seen.append(reference)
            if len(seen) < 3:
                raise DuplicateReferenceException(f"{reference} taken")
            return reference

        result = await generator.allocate(persist)

        assert len(seen) == 3
        assert result == seen[-1]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        generator = ReferenceGenerator(max_attempts=4)
        persist = AsyncMock(side_effect=DuplicateReferenceException("taken"))

        with pytest.raises(ReferenceAllocationException):
            await generator.allocate(persist)

        assert persist.await_count == 4

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        generator = ReferenceGenerator(max_attempts=5)
        persist = AsyncMock(side_effect=RuntimeError("store down"))

        with pytest.raises(RuntimeError, match="store down"):
            await generator.allocate(persist)

        assert persist.await_count == 1

    def test_unset_attempts_fall_back_to_settings(self):
        assert ReferenceGenerator().max_attempts == settings.reference_max_attempts

    @pytest.mark.asyncio
    async def test_zero_attempts_is_honoured(self):
        generator = ReferenceGenerator(max_attempts=0)
        persist = AsyncMock()

        assert generator.max_attempts == 0
        with pytest.raises(ReferenceAllocationException):
            await generator.allocate(persist)

        persist.assert_not_awaited()


class TestNormalize:
    def test_strips_and_upper_cases(self):
        assert normalize_reference("  gar-2603-abc123 ") == "GAR-2603-ABC123"
