"""Customer-visible transaction references (GAR-YYMM-XXXXXX)."""

from __future__ import annotations

import logging
import re
import secrets
import string
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

from guarantee_engine.clock import Clock, utc_now
from guarantee_engine.config import settings
from guarantee_engine.exceptions import (
    DuplicateReferenceException,
    ReferenceAllocationException,
)

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "GAR"
REFERENCE_SUFFIX_LENGTH = 6
REFERENCE_PATTERN = re.compile(r"^GAR-\d{4}-[A-Z0-9]{6}$")

_BASE36_ALPHABET = string.digits + string.ascii_uppercase

# How many recently issued references a generator remembers
_RECENT_CAPACITY = 16_384

T = TypeVar("T")


class ReferenceGenerator:
    """Generate references and retry allocation when the store reports a collision.

    A bounded memory of recently issued references lets the generator skip
    repeats locally instead of paying a store round trip to discover them.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        max_attempts: int | None = None,
    ) -> None:
        self.clock = clock
        if max_attempts is None:
            max_attempts = settings.reference_max_attempts
        self.max_attempts = max_attempts
        self._recent: deque[str] = deque(maxlen=_RECENT_CAPACITY)
        self._recent_set: set[str] = set()

    def generate(self) -> str:
        prefix = f"{REFERENCE_PREFIX}-{self.clock():%y%m}-"
        while True:
            suffix = "".join(
                secrets.choice(_BASE36_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH)
            )
            reference = prefix + suffix
            if reference not in self._recent_set:
                break

        if len(self._recent) == self._recent.maxlen:
            self._recent_set.discard(self._recent[0])
        self._recent.append(reference)
        self._recent_set.add(reference)
        return reference

    async def allocate(self, persist: Callable[[str], Awaitable[T]]) -> T:
        """Call ``persist`` with fresh references until one is accepted.

        ``persist`` must raise DuplicateReferenceException when the reference
        is already taken. Any other error propagates immediately.
        """
        for attempt in range(1, self.max_attempts + 1):
            reference = self.generate()
            try:
                return await persist(reference)
            except DuplicateReferenceException:
                logger.warning(
                    "Reference %s already taken (attempt %d/%d)",
                    reference, attempt, self.max_attempts,
                )
        raise ReferenceAllocationException(
            f"Cannot allocate a unique reference after {self.max_attempts} attempts"
        )


def normalize_reference(reference: str) -> str:
    return reference.strip().upper()
