"""Default customer guarantees attached to every new transaction."""

from __future__ import annotations

from datetime import datetime

from guarantee_engine.models.enums import GuaranteeType
from guarantee_engine.modules.escrow.constants import (
    MONEY_BACK_VALIDITY,
    PARTIAL_REFUND_VALIDITY,
    REPLACEMENT_VALIDITY,
)
from guarantee_engine.modules.escrow.domain import Guarantee


def default_guarantees(now: datetime) -> tuple[Guarantee, ...]:
    """Compute the bundle once at creation; later policy changes do not touch stored copies."""
    return (
        Guarantee(
            type=GuaranteeType.MONEY_BACK,
            description="Full refund if not delivered",
            valid_until=now + MONEY_BACK_VALIDITY,
            conditions="Applies if the product is not delivered within the announced lead time",
        ),
        Guarantee(
            type=GuaranteeType.REPLACEMENT,
            description="Replacement if the product is defective",
            valid_until=now + REPLACEMENT_VALIDITY,
            conditions="Report within 48h of receipt with supporting photos",
        ),
        Guarantee(
            type=GuaranteeType.PARTIAL_REFUND,
            description="Partial refund if the product does not match its description",
            valid_until=now + PARTIAL_REFUND_VALIDITY,
            conditions="Applies to minor differences from the product description",
        ),
    )
