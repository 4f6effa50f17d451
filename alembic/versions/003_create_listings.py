"""003: create listings, listing_bids and listing_offers

A listing row carries the kind-specific terms in nullable columns, the
materialized winning bid (current_bid, winning_bid_id), the snapshotted fee
rates and the optimistic-lock version. Bids are an append-only log; only
is_winning is ever rewritten.

Revision ID: 003
Revises: 002
Create Date: 2026-10-01
"""
from typing import Sequence, Union

from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE listings (
            id                          VARCHAR(64)     PRIMARY KEY,
            asset_id                    VARCHAR(64)     NOT NULL,
            seller_id                   VARCHAR(64)     NOT NULL,
            event_id                    VARCHAR(64),
            currency                    VARCHAR(10)     NOT NULL,
            kind                        VARCHAR(20)     NOT NULL,
            status                      VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            price                       BIGINT,
            allow_offers                BOOLEAN         NOT NULL DEFAULT TRUE,
            auto_accept_threshold       BIGINT,
            minimum_offer               BIGINT,
            starting_price              BIGINT,
            reserve_price               BIGINT,
            minimum_bid_increment       BIGINT,
            start_time                  TIMESTAMPTZ,
            end_time                    TIMESTAMPTZ,
            auto_extend                 BOOLEAN         NOT NULL DEFAULT TRUE,
            extension_window_seconds    INT,
            current_bid                 BIGINT,
            winning_bid_id              VARCHAR(64),
            asking_price                BIGINT,
            royalty_bps                 INT             NOT NULL DEFAULT 0,
            royalty_recipient_id        VARCHAR(64),
            platform_fee_bps            INT             NOT NULL DEFAULT 0,
            description                 TEXT            NOT NULL DEFAULT '',
            escrow_ref                  VARCHAR(128),
            expires_at                  TIMESTAMPTZ,
            pending_sale                JSONB,
            settlement                  JSONB,
            view_count                  INT             NOT NULL DEFAULT 0,
            bid_count                   INT             NOT NULL DEFAULT 0,
            offer_count                 INT             NOT NULL DEFAULT 0,
            last_activity_at            TIMESTAMPTZ,
            version                     INT             NOT NULL DEFAULT 0,
            closed_at                   TIMESTAMPTZ,
            close_reason                VARCHAR(64),
            created_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listings_currency CHECK (currency IN ('SOL', 'USD', 'USDC', 'ETH')),
            CONSTRAINT ck_listings_kind CHECK (kind IN ('FIXED_PRICE', 'AUCTION', 'OFFER_BASED')),
            CONSTRAINT ck_listings_status CHECK (
                status IN ('ACTIVE', 'SOLD', 'CANCELLED', 'EXPIRED')
            ),
            CONSTRAINT ck_listings_fixed_price CHECK (
                kind <> 'FIXED_PRICE' OR (price IS NOT NULL AND price > 0)
            ),
            CONSTRAINT ck_listings_auction CHECK (
                kind <> 'AUCTION' OR (
                    starting_price IS NOT NULL AND starting_price > 0
                    AND minimum_bid_increment IS NOT NULL AND minimum_bid_increment > 0
                    AND start_time IS NOT NULL AND end_time IS NOT NULL
                    AND (reserve_price IS NULL OR reserve_price >= starting_price)
                )
            ),
            CONSTRAINT ck_listings_fees CHECK (
                royalty_bps >= 0 AND royalty_bps <= 5000
                AND platform_fee_bps >= 0 AND platform_fee_bps <= 1000
            ),
            CONSTRAINT ck_listings_sold_has_settlement CHECK (
                status <> 'SOLD' OR settlement IS NOT NULL
            ),
            CONSTRAINT ck_listings_version_gte_0 CHECK (version >= 0)
        );
    """)
    # At most one ACTIVE listing per ticket
    op.execute("""
        CREATE UNIQUE INDEX uq_listings_active_asset
            ON listings (asset_id) WHERE status = 'ACTIVE';
    """)
    op.execute("CREATE INDEX idx_listings_status_created ON listings (status, created_at DESC, id DESC);")
    op.execute("CREATE INDEX idx_listings_seller ON listings (seller_id);")
    op.execute("CREATE INDEX idx_listings_event ON listings (event_id);")
    op.execute("""
        CREATE INDEX idx_listings_auction_end
            ON listings (end_time) WHERE status = 'ACTIVE' AND kind = 'AUCTION';
    """)
    op.execute("""
        CREATE INDEX idx_listings_expires
            ON listings (expires_at) WHERE status = 'ACTIVE' AND expires_at IS NOT NULL;
    """)

    op.execute("""
        CREATE TABLE listing_bids (
            id              VARCHAR(64)     PRIMARY KEY,
            listing_id      VARCHAR(64)     NOT NULL REFERENCES listings(id),
            bidder_id       VARCHAR(64)     NOT NULL,
            amount          BIGINT          NOT NULL,
            sequence        INT             NOT NULL,
            is_winning      BOOLEAN         NOT NULL DEFAULT FALSE,
            escrow_ref      VARCHAR(128),
            placed_at       TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listing_bids_amount CHECK (amount > 0),
            CONSTRAINT uq_listing_bids_sequence UNIQUE (listing_id, sequence)
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_listing_bids_winning
            ON listing_bids (listing_id) WHERE is_winning;
    """)

    op.execute("""
        CREATE TABLE listing_offers (
            id              VARCHAR(64)     PRIMARY KEY,
            listing_id      VARCHAR(64)     NOT NULL REFERENCES listings(id),
            offerer_id      VARCHAR(64)     NOT NULL,
            amount          BIGINT          NOT NULL,
            message         VARCHAR(500)    NOT NULL DEFAULT '',
            status          VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            expires_at      TIMESTAMPTZ     NOT NULL,
            counter_amount  BIGINT,
            countered_at    TIMESTAMPTZ,
            resolved_at     TIMESTAMPTZ,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listing_offers_amount CHECK (amount > 0),
            CONSTRAINT ck_listing_offers_counter CHECK (counter_amount IS NULL OR counter_amount > 0),
            CONSTRAINT ck_listing_offers_status CHECK (
                status IN ('PENDING', 'ACCEPTED', 'REJECTED', 'EXPIRED')
            )
        );
    """)
    # One PENDING offer per offerer per listing
    op.execute("""
        CREATE UNIQUE INDEX uq_listing_offers_pending_offerer
            ON listing_offers (listing_id, offerer_id) WHERE status = 'PENDING';
    """)
    op.execute("""
        CREATE INDEX idx_listing_offers_pending_expiry
            ON listing_offers (expires_at) WHERE status = 'PENDING';
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS listing_offers;")
    op.execute("DROP TABLE IF EXISTS listing_bids;")
    op.execute("DROP TABLE IF EXISTS listings;")
