"""002: create events, tickets and ticket_transfers

The off-chain system of record for tickets. The marketplace reads ownership
and event status here and writes the listed flag and ownership transfers.

Revision ID: 002
Revises: 001
Create Date: 2026-10-01
"""
from typing import Sequence, Union

from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE events (
            id                      VARCHAR(64)     PRIMARY KEY,
            name                    VARCHAR(500)    NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            starts_at               TIMESTAMPTZ     NOT NULL,
            ends_at                 TIMESTAMPTZ,
            royalty_bps             INT             NOT NULL DEFAULT 0,
            royalty_recipient_id    VARCHAR(64),
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_events_status CHECK (status IN ('ACTIVE', 'CANCELLED', 'CONCLUDED')),
            CONSTRAINT ck_events_royalty CHECK (royalty_bps >= 0 AND royalty_bps <= 5000),
            CONSTRAINT ck_events_window CHECK (ends_at IS NULL OR ends_at >= starts_at)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_events_updated_at
            BEFORE UPDATE ON events
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE tickets (
            id                  VARCHAR(64)     PRIMARY KEY,
            owner_id            VARCHAR(64)     NOT NULL,
            event_id            VARCHAR(64)     NOT NULL REFERENCES events(id),
            status              VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            listing_id          VARCHAR(64),
            non_transferable    BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_tickets_status CHECK (status IN ('ACTIVE', 'LISTED')),
            CONSTRAINT ck_tickets_listed CHECK (
                (status = 'LISTED') = (listing_id IS NOT NULL)
            )
        );
    """)
    op.execute("CREATE INDEX idx_tickets_owner ON tickets (owner_id);")
    op.execute("CREATE INDEX idx_tickets_event ON tickets (event_id);")
    op.execute("""
        CREATE TRIGGER trg_tickets_updated_at
            BEFORE UPDATE ON tickets
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE ticket_transfers (
            id                  VARCHAR(64)     PRIMARY KEY,
            ticket_id           VARCHAR(64)     NOT NULL REFERENCES tickets(id),
            from_owner_id       VARCHAR(64)     NOT NULL,
            to_owner_id         VARCHAR(64)     NOT NULL,
            listing_id          VARCHAR(64)     NOT NULL,
            price               BIGINT          NOT NULL,
            transaction_ref     VARCHAR(128)    NOT NULL,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_ticket_transfers_price CHECK (price >= 0),
            CONSTRAINT uq_ticket_transfers_listing UNIQUE (listing_id)
        );
    """)
    op.execute("CREATE INDEX idx_ticket_transfers_ticket ON ticket_transfers (ticket_id);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ticket_transfers;")
    op.execute("DROP TABLE IF EXISTS tickets;")
    op.execute("DROP TABLE IF EXISTS events;")
