"""GuaranteedTransaction model — persisted form of the transaction aggregate."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from guarantee_engine.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from guarantee_engine.models.enums import EscrowStatus

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
DocumentType = JSON().with_variant(JSONB(), "postgresql")


class GuaranteedTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "guaranteed_transactions"

    reference: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # Links
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    order_id: Mapped[str | None] = mapped_column(String(64))
    group_order_id: Mapped[str | None] = mapped_column(String(64))

    # Client snapshot {name, phone, email}
    client: Mapped[dict] = mapped_column(DocumentType, nullable=False)

    # Amounts
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, server_default="FCFA")
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )

    status: Mapped[EscrowStatus] = mapped_column(
        SQLAlchemyEnum(
            EscrowStatus,
            name="escrowstatus",
            native_enum=False,
            length=32,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )

    # Append-only history and guarantees
    timeline: Mapped[list] = mapped_column(DocumentType, nullable=False)
    guarantees: Mapped[list] = mapped_column(DocumentType, nullable=False)

    # Key dates
    payment_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    order_placed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verification_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Sub-records
    delivery: Mapped[dict | None] = mapped_column(DocumentType)
    dispute: Mapped[dict | None] = mapped_column(DocumentType)
    refund: Mapped[dict | None] = mapped_column(DocumentType)

    # Denormalized from dispute.opened_at so the sweeper can filter in SQL
    dispute_opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Optimistic concurrency token, compared on every update
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")

    __table_args__ = (
        Index("ix_guaranteed_transactions_status", "status"),
        Index("ix_guaranteed_transactions_user_id", "user_id"),
        Index("ix_guaranteed_transactions_group_order_id", "group_order_id"),
        Index("ix_guaranteed_transactions_verification_ends_at", "verification_ends_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<GuaranteedTransaction reference={self.reference} "
            f"status={self.status} version={self.version}>"
        )
