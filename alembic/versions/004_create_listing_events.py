"""004: create listing_events outbox

Notification and analytics collaborators consume these rows; the engine only
appends, in the same transaction as the change each row describes.

Revision ID: 004
Revises: 003
Create Date: 2026-10-01
"""
from typing import Sequence, Union

from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE listing_events (
            id              VARCHAR(64)     PRIMARY KEY,
            listing_id      VARCHAR(64)     NOT NULL,
            event_type      VARCHAR(40)     NOT NULL,
            payload         JSONB           NOT NULL DEFAULT '{}'::jsonb,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listing_events_type CHECK (
                event_type IN (
                    'LISTING_CREATED', 'LISTING_UPDATED', 'LISTING_CANCELLED',
                    'LISTING_EXPIRED', 'BID_PLACED', 'OFFER_MADE', 'OFFER_ACCEPTED',
                    'OFFER_REJECTED', 'OFFER_COUNTERED', 'OFFER_EXPIRED', 'SALE_SETTLED',
                    'BID_REFUND_DUE', 'SETTLEMENT_QUEUED', 'RECONCILIATION_REQUIRED'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_listing_events_listing ON listing_events (listing_id, created_at);")
    op.execute("CREATE INDEX idx_listing_events_created ON listing_events (created_at, id);")
    op.execute("""
        CREATE TRIGGER trg_listing_events_append_only
            BEFORE UPDATE OR DELETE ON listing_events
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS listing_events;")
