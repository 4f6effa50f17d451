"""005: create reconciliation_items

Durable queue of partial successes: escrow settlements that exhausted their
retries, sales escrow confirmed but local finalize lost, and escrow
cancellations or price syncs that still need to reach the chain.

listing_id has no foreign key: an orphaned escrow listing refers to a
listing id that was never stored.

Revision ID: 005
Revises: 004
Create Date: 2026-10-01
"""
from typing import Sequence, Union

from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE reconciliation_items (
            id                  VARCHAR(64)     PRIMARY KEY,
            kind                VARCHAR(40)     NOT NULL,
            listing_id          VARCHAR(64)     NOT NULL,
            payload             JSONB           NOT NULL DEFAULT '{}'::jsonb,
            status              VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            attempts            INT             NOT NULL DEFAULT 0,
            last_error          TEXT,
            next_attempt_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_reconciliation_items_kind CHECK (
                kind IN (
                    'SETTLEMENT_RETRY', 'FINALIZE_SALE', 'ESCROW_CANCEL',
                    'ESCROW_PRICE_SYNC', 'ORPHAN_ESCROW_LISTING'
                )
            ),
            CONSTRAINT ck_reconciliation_items_status CHECK (
                status IN ('PENDING', 'RESOLVED', 'MANUAL')
            ),
            CONSTRAINT ck_reconciliation_items_attempts CHECK (attempts >= 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_reconciliation_items_due
            ON reconciliation_items (next_attempt_at) WHERE status = 'PENDING';
    """)
    op.execute("""
        CREATE INDEX idx_reconciliation_items_listing
            ON reconciliation_items (listing_id, kind, status);
    """)
    op.execute("""
        CREATE TRIGGER trg_reconciliation_items_updated_at
            BEFORE UPDATE ON reconciliation_items
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reconciliation_items;")
