"""SQLAlchemy ORM models for listings, listing_bids and listing_offers.

Used for type reference only: persistence.py uses raw text() SQL.
Alembic migrations (003_create_listings.py) are the authoritative DDL source.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.tm_common.database import Base


class ListingORM(Base):
    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    asset_id: Mapped[str] = mapped_column(Text, nullable=False)
    seller_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_id: Mapped[str | None] = mapped_column(Text)
    currency: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    # FIXED_PRICE / OFFER_BASED
    price: Mapped[int | None] = mapped_column(BigInteger)
    allow_offers: Mapped[bool] = mapped_column(Boolean, nullable=False)
    auto_accept_threshold: Mapped[int | None] = mapped_column(BigInteger)
    minimum_offer: Mapped[int | None] = mapped_column(BigInteger)
    # AUCTION
    starting_price: Mapped[int | None] = mapped_column(BigInteger)
    reserve_price: Mapped[int | None] = mapped_column(BigInteger)
    minimum_bid_increment: Mapped[int | None] = mapped_column(BigInteger)
    start_time: Mapped[datetime | None] = mapped_column()
    end_time: Mapped[datetime | None] = mapped_column()
    auto_extend: Mapped[bool] = mapped_column(Boolean, nullable=False)
    extension_window_seconds: Mapped[int | None] = mapped_column(Integer)
    current_bid: Mapped[int | None] = mapped_column(BigInteger)
    winning_bid_id: Mapped[str | None] = mapped_column(Text)
    # Denormalized for price-range filters
    asking_price: Mapped[int | None] = mapped_column(BigInteger)
    # Fee snapshot
    royalty_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    royalty_recipient_id: Mapped[str | None] = mapped_column(Text)
    platform_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    escrow_ref: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column()
    pending_sale: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    settlement: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False)
    bid_count: Mapped[int] = mapped_column(Integer, nullable=False)
    offer_count: Mapped[int] = mapped_column(Integer, nullable=False)
    last_activity_at: Mapped[datetime | None] = mapped_column()
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column()
    close_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    sweep_retry_at: Mapped[datetime | None] = mapped_column()


class ListingBidORM(Base):
    __tablename__ = "listing_bids"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    listing_id: Mapped[str] = mapped_column(Text, nullable=False)
    bidder_id: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    is_winning: Mapped[bool] = mapped_column(Boolean, nullable=False)
    escrow_ref: Mapped[str | None] = mapped_column(Text)
    placed_at: Mapped[datetime] = mapped_column(nullable=False)


class ListingOfferORM(Base):
    __tablename__ = "listing_offers"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    listing_id: Mapped[str] = mapped_column(Text, nullable=False)
    offerer_id: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    counter_amount: Mapped[int | None] = mapped_column(BigInteger)
    countered_at: Mapped[datetime | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(nullable=False)
