"""Create guaranteed_transactions and event_outbox

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: guaranteed_transactions, event_outbox
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. guaranteed_transactions ────────────────────────────────────────
    op.execute("""
        CREATE TABLE guaranteed_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            reference VARCHAR(20) NOT NULL UNIQUE,
            user_id UUID,
            order_id VARCHAR(64),
            group_order_id VARCHAR(64),
            client JSONB NOT NULL,
            amount NUMERIC(15, 2) NOT NULL CHECK (amount >= 0),
            currency VARCHAR(10) NOT NULL DEFAULT 'FCFA',
            paid_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
            status VARCHAR(32) NOT NULL CHECK (status IN (
                'pending_payment', 'payment_received', 'funds_secured',
                'order_placed', 'order_confirmed', 'in_transit', 'delivered',
                'verification', 'completed', 'disputed', 'refunded', 'cancelled'
            )),
            timeline JSONB NOT NULL,
            guarantees JSONB NOT NULL DEFAULT '[]',
            payment_received_at TIMESTAMPTZ,
            order_placed_at TIMESTAMPTZ,
            delivered_at TIMESTAMPTZ,
            verification_ends_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            delivery JSONB,
            dispute JSONB,
            refund JSONB,
            dispute_opened_at TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_guaranteed_transactions_status ON guaranteed_transactions (status);")
    op.execute("CREATE INDEX ix_guaranteed_transactions_user_id ON guaranteed_transactions (user_id);")
    op.execute(
        "CREATE INDEX ix_guaranteed_transactions_group_order_id "
        "ON guaranteed_transactions (group_order_id);"
    )
    op.execute(
        "CREATE INDEX ix_guaranteed_transactions_verification_ends_at "
        "ON guaranteed_transactions (verification_ends_at);"
    )
    # Sweeper candidates: delivered/verification, undisputed, window set
    op.execute("""
        CREATE INDEX ix_guaranteed_transactions_sweep
        ON guaranteed_transactions (verification_ends_at)
        WHERE status IN ('delivered', 'verification') AND dispute_opened_at IS NULL;
    """)

    # ── 2. event_outbox ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE event_outbox (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_type VARCHAR(255) NOT NULL,
            aggregate_type VARCHAR(255) NOT NULL,
            aggregate_id VARCHAR(255) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_event_outbox_status_created_at ON event_outbox (status, created_at);")
    op.execute("CREATE INDEX ix_event_outbox_aggregate ON event_outbox (aggregate_type, aggregate_id);")
    op.execute("CREATE INDEX ix_event_outbox_pending ON event_outbox (created_at) WHERE status = 'PENDING';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS event_outbox;")
    op.execute("DROP TABLE IF EXISTS guaranteed_transactions;")
