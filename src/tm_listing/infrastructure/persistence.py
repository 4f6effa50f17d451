"""ListingRepository: raw SQL implementation of ListingRepositoryProtocol.

A listing is one `listings` row plus its append-only `listing_bids` log and
its `listing_offers` rows. The winning bid is materialized on the listing
row (current_bid, winning_bid_id) and only rewritten under the listing's
exclusive section, guarded by the version compare-and-swap in `save`.

asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ListingStatus, OfferStatus
from src.tm_common.errors import (
    DuplicateListingError,
    DuplicateOfferError,
    StaleListingError,
)
from src.tm_listing.domain.models import (
    AuctionTerms,
    Bid,
    FeeSchedule,
    FixedPriceTerms,
    Listing,
    ListingAnalytics,
    ListingTerms,
    Offer,
    OfferBasedTerms,
    PendingSale,
    SettlementRecord,
)
from src.tm_listing.domain.repository import ListingFilters

logger = logging.getLogger(__name__)

ACTIVE_ASSET_INDEX = "uq_listings_active_asset"
PENDING_OFFER_INDEX = "uq_listing_offers_pending_offerer"

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_LISTING_COLUMNS = """
    id, asset_id, seller_id, event_id, currency, kind, status,
    price, allow_offers, auto_accept_threshold, minimum_offer,
    starting_price, reserve_price, minimum_bid_increment,
    start_time, end_time, auto_extend, extension_window_seconds,
    current_bid, winning_bid_id,
    royalty_bps, royalty_recipient_id, platform_fee_bps,
    description, escrow_ref, expires_at, pending_sale, settlement,
    view_count, bid_count, offer_count, last_activity_at,
    version, closed_at, close_reason, created_at, updated_at,
    sweep_retry_at
"""

_GET_LISTING_SQL = text(f"""
    SELECT {_LISTING_COLUMNS}
    FROM listings
    WHERE id = :listing_id
""")

_GET_ACTIVE_FOR_ASSET_SQL = text(f"""
    SELECT {_LISTING_COLUMNS}
    FROM listings
    WHERE asset_id = :asset_id AND status = 'ACTIVE'
""")

_INSERT_LISTING_SQL = text("""
    INSERT INTO listings (
        id, asset_id, seller_id, event_id, currency, kind, status,
        price, allow_offers, auto_accept_threshold, minimum_offer,
        starting_price, reserve_price, minimum_bid_increment,
        start_time, end_time, auto_extend, extension_window_seconds,
        current_bid, winning_bid_id, asking_price,
        royalty_bps, royalty_recipient_id, platform_fee_bps,
        description, escrow_ref, expires_at, pending_sale, settlement,
        view_count, bid_count, offer_count, last_activity_at,
        version, created_at, updated_at
    ) VALUES (
        :id, :asset_id, :seller_id, :event_id, :currency, :kind, :status,
        :price, :allow_offers, :auto_accept_threshold, :minimum_offer,
        :starting_price, :reserve_price, :minimum_bid_increment,
        :start_time, :end_time, :auto_extend, :extension_window_seconds,
        :current_bid, :winning_bid_id, :asking_price,
        :royalty_bps, :royalty_recipient_id, :platform_fee_bps,
        :description, :escrow_ref, :expires_at,
        CAST(:pending_sale AS JSONB), CAST(:settlement AS JSONB),
        :view_count, :bid_count, :offer_count, :last_activity_at,
        :version, :created_at, :updated_at
    )
""")

_CAS_UPDATE_LISTING_SQL = text("""
    UPDATE listings
    SET status = :status,
        price = :price,
        allow_offers = :allow_offers,
        auto_accept_threshold = :auto_accept_threshold,
        minimum_offer = :minimum_offer,
        starting_price = :starting_price,
        reserve_price = :reserve_price,
        end_time = :end_time,
        current_bid = :current_bid,
        winning_bid_id = :winning_bid_id,
        asking_price = :asking_price,
        description = :description,
        escrow_ref = :escrow_ref,
        expires_at = :expires_at,
        pending_sale = CAST(:pending_sale AS JSONB),
        settlement = CAST(:settlement AS JSONB),
        bid_count = :bid_count,
        offer_count = :offer_count,
        last_activity_at = :last_activity_at,
        closed_at = :closed_at,
        close_reason = :close_reason,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id AND version = :version
""")

_UPSERT_BID_SQL = text("""
    INSERT INTO listing_bids
        (id, listing_id, bidder_id, amount, sequence, is_winning, escrow_ref, placed_at)
    VALUES
        (:id, :listing_id, :bidder_id, :amount, :sequence, :is_winning, :escrow_ref, :placed_at)
    ON CONFLICT (id) DO UPDATE SET is_winning = EXCLUDED.is_winning
""")

_UPSERT_OFFER_SQL = text("""
    INSERT INTO listing_offers
        (id, listing_id, offerer_id, amount, message, status, expires_at,
         counter_amount, countered_at, resolved_at, created_at)
    VALUES
        (:id, :listing_id, :offerer_id, :amount, :message, :status, :expires_at,
         :counter_amount, :countered_at, :resolved_at, :created_at)
    ON CONFLICT (id) DO UPDATE SET
        status = EXCLUDED.status,
        counter_amount = EXCLUDED.counter_amount,
        countered_at = EXCLUDED.countered_at,
        resolved_at = EXCLUDED.resolved_at
""")

_BIDS_FOR_LISTINGS_SQL = text("""
    SELECT id, listing_id, bidder_id, amount, sequence, is_winning, escrow_ref, placed_at
    FROM listing_bids
    WHERE listing_id = ANY(:listing_ids)
    ORDER BY listing_id, sequence ASC
""")

_OFFERS_FOR_LISTINGS_SQL = text("""
    SELECT id, listing_id, offerer_id, amount, message, status, expires_at,
           counter_amount, countered_at, resolved_at, created_at
    FROM listing_offers
    WHERE listing_id = ANY(:listing_ids)
    ORDER BY listing_id, created_at ASC, id ASC
""")

_LIST_LISTINGS_SQL = text(f"""
    SELECT {_LISTING_COLUMNS}
    FROM listings
    WHERE
        (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
        AND (CAST(:kind AS TEXT) IS NULL OR kind = CAST(:kind AS TEXT))
        AND (CAST(:currency AS TEXT) IS NULL OR currency = CAST(:currency AS TEXT))
        AND (CAST(:seller_id AS TEXT) IS NULL OR seller_id = CAST(:seller_id AS TEXT))
        AND (CAST(:asset_id AS TEXT) IS NULL OR asset_id = CAST(:asset_id AS TEXT))
        AND (CAST(:event_id AS TEXT) IS NULL OR event_id = CAST(:event_id AS TEXT))
        AND (CAST(:min_price AS BIGINT) IS NULL OR asking_price >= CAST(:min_price AS BIGINT))
        AND (CAST(:max_price AS BIGINT) IS NULL OR asking_price <= CAST(:max_price AS BIGINT))
        AND (
            CAST(:search AS TEXT) IS NULL
            OR description ILIKE '%' || CAST(:search AS TEXT) || '%'
        )
        AND (
            CAST(:cursor_ts AS TIMESTAMPTZ) IS NULL
            OR created_at < CAST(:cursor_ts AS TIMESTAMPTZ)
            OR (
                created_at = CAST(:cursor_ts AS TIMESTAMPTZ)
                AND id < CAST(:cursor_id AS TEXT)
            )
        )
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

_LIST_DUE_IDS_SQL = text("""
    SELECT due.id
    FROM (
        SELECT
            l.id,
            LEAST(
                CASE WHEN l.kind = 'AUCTION' THEN l.end_time ELSE l.expires_at END,
                (
                    SELECT MIN(o.expires_at)
                    FROM listing_offers o
                    WHERE o.listing_id = l.id AND o.status = 'PENDING'
                )
            ) AS deadline
        FROM listings l
        WHERE l.status = 'ACTIVE'
          AND l.pending_sale IS NULL
          AND (l.sweep_retry_at IS NULL OR l.sweep_retry_at <= :now)
    ) due
    WHERE due.deadline <= :now
    ORDER BY due.deadline ASC, due.id ASC
    LIMIT :limit
""")

# sweep_retry_at sits outside the version CAS; save never writes it.
_DEFER_SWEEP_SQL = text("""
    UPDATE listings SET sweep_retry_at = :retry_at WHERE id = :listing_id
""")

_INCREMENT_VIEWS_SQL = text("""
    UPDATE listings SET view_count = view_count + 1 WHERE id = :listing_id
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _load_json(value: Any) -> dict | None:
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_bid(row: Any) -> Bid:
    return Bid(
        id=row.id,
        listing_id=row.listing_id,
        bidder_id=row.bidder_id,
        amount=row.amount,
        sequence=row.sequence,
        placed_at=row.placed_at,
        is_winning=row.is_winning,
        escrow_ref=row.escrow_ref,
    )


def _row_to_offer(row: Any) -> Offer:
    return Offer(
        id=row.id,
        listing_id=row.listing_id,
        offerer_id=row.offerer_id,
        amount=row.amount,
        expires_at=row.expires_at,
        created_at=row.created_at,
        message=row.message or "",
        status=OfferStatus(row.status),
        counter_amount=row.counter_amount,
        countered_at=row.countered_at,
        resolved_at=row.resolved_at,
    )


def _row_to_terms(row: Any, bids: list[Bid], offers: list[Offer]) -> ListingTerms:
    if row.kind == "AUCTION":
        return AuctionTerms(
            starting_price=row.starting_price,
            reserve_price=row.reserve_price,
            minimum_bid_increment=row.minimum_bid_increment,
            start_time=row.start_time,
            end_time=row.end_time,
            auto_extend=row.auto_extend,
            extension_window=timedelta(seconds=row.extension_window_seconds),
            current_bid=row.current_bid,
            winning_bid_id=row.winning_bid_id,
            bids=bids,
        )
    if row.kind == "OFFER_BASED":
        return OfferBasedTerms(
            minimum_offer=row.minimum_offer,
            auto_accept_threshold=row.auto_accept_threshold,
            offers=offers,
        )
    return FixedPriceTerms(
        price=row.price,
        allow_offers=row.allow_offers,
        auto_accept_threshold=row.auto_accept_threshold,
        offers=offers,
    )


def _row_to_listing(row: Any, bids: list[Bid], offers: list[Offer]) -> Listing:
    pending = _load_json(row.pending_sale)
    settlement = _load_json(row.settlement)
    return Listing(
        id=row.id,
        asset_id=row.asset_id,
        seller_id=row.seller_id,
        currency=row.currency,
        terms=_row_to_terms(row, bids, offers),
        fees=FeeSchedule(
            royalty_bps=row.royalty_bps,
            platform_fee_bps=row.platform_fee_bps,
            royalty_recipient_id=row.royalty_recipient_id,
        ),
        event_id=row.event_id,
        status=ListingStatus(row.status),
        description=row.description or "",
        escrow_ref=row.escrow_ref,
        expires_at=row.expires_at,
        pending_sale=PendingSale.from_dict(pending) if pending else None,
        settlement=SettlementRecord.from_dict(settlement) if settlement else None,
        analytics=ListingAnalytics(
            view_count=row.view_count,
            bid_count=row.bid_count,
            offer_count=row.offer_count,
            last_activity_at=row.last_activity_at,
        ),
        version=row.version,
        closed_at=row.closed_at,
        close_reason=row.close_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
        sweep_retry_at=row.sweep_retry_at,
    )


def _listing_params(listing: Listing) -> dict[str, Any]:
    """Flatten the terms union onto the listing row's columns."""
    terms = listing.terms
    params: dict[str, Any] = {
        "id": listing.id,
        "asset_id": listing.asset_id,
        "seller_id": listing.seller_id,
        "event_id": listing.event_id,
        "currency": listing.currency,
        "kind": listing.kind.value,
        "status": listing.status.value,
        "price": None,
        "allow_offers": False,
        "auto_accept_threshold": None,
        "minimum_offer": None,
        "starting_price": None,
        "reserve_price": None,
        "minimum_bid_increment": None,
        "start_time": None,
        "end_time": None,
        "auto_extend": False,
        "extension_window_seconds": None,
        "current_bid": None,
        "winning_bid_id": None,
        "asking_price": listing.asking_price,
        "royalty_bps": listing.fees.royalty_bps,
        "royalty_recipient_id": listing.fees.royalty_recipient_id,
        "platform_fee_bps": listing.fees.platform_fee_bps,
        "description": listing.description,
        "escrow_ref": listing.escrow_ref,
        "expires_at": listing.expires_at,
        "pending_sale": (
            json.dumps(listing.pending_sale.to_dict()) if listing.pending_sale else None
        ),
        "settlement": (
            json.dumps(listing.settlement.to_dict()) if listing.settlement else None
        ),
        "view_count": listing.analytics.view_count,
        "bid_count": listing.analytics.bid_count,
        "offer_count": listing.analytics.offer_count,
        "last_activity_at": listing.analytics.last_activity_at,
        "version": listing.version,
        "closed_at": listing.closed_at,
        "close_reason": listing.close_reason,
        "created_at": listing.created_at,
        "updated_at": listing.updated_at,
        "sweep_retry_at": listing.sweep_retry_at,
    }
    if isinstance(terms, AuctionTerms):
        params.update(
            starting_price=terms.starting_price,
            reserve_price=terms.reserve_price,
            minimum_bid_increment=terms.minimum_bid_increment,
            start_time=terms.start_time,
            end_time=terms.end_time,
            auto_extend=terms.auto_extend,
            extension_window_seconds=int(terms.extension_window.total_seconds()),
            current_bid=terms.current_bid,
            winning_bid_id=terms.winning_bid_id,
        )
    elif isinstance(terms, OfferBasedTerms):
        params.update(
            allow_offers=True,
            minimum_offer=terms.minimum_offer,
            auto_accept_threshold=terms.auto_accept_threshold,
        )
    else:
        params.update(
            price=terms.price,
            allow_offers=terms.allow_offers,
            auto_accept_threshold=terms.auto_accept_threshold,
        )
    return params


def _bid_params(bid: Bid) -> dict[str, Any]:
    return {
        "id": bid.id,
        "listing_id": bid.listing_id,
        "bidder_id": bid.bidder_id,
        "amount": bid.amount,
        "sequence": bid.sequence,
        "is_winning": bid.is_winning,
        "escrow_ref": bid.escrow_ref,
        "placed_at": bid.placed_at,
    }


def _offer_params(offer: Offer) -> dict[str, Any]:
    return {
        "id": offer.id,
        "listing_id": offer.listing_id,
        "offerer_id": offer.offerer_id,
        "amount": offer.amount,
        "message": offer.message,
        "status": offer.status.value,
        "expires_at": offer.expires_at,
        "counter_amount": offer.counter_amount,
        "countered_at": offer.countered_at,
        "resolved_at": offer.resolved_at,
        "created_at": offer.created_at,
    }


def _violated(exc: IntegrityError, constraint: str) -> bool:
    return constraint in str(exc.orig)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ListingRepository:
    async def get(self, db: AsyncSession, listing_id: str) -> Listing | None:
        result = await db.execute(_GET_LISTING_SQL, {"listing_id": listing_id})
        row = result.fetchone()
        if row is None:
            return None
        return (await self._hydrate(db, [row]))[0]

    async def get_active_for_asset(self, db: AsyncSession, asset_id: str) -> Listing | None:
        result = await db.execute(_GET_ACTIVE_FOR_ASSET_SQL, {"asset_id": asset_id})
        row = result.fetchone()
        if row is None:
            return None
        return (await self._hydrate(db, [row]))[0]

    async def insert(self, db: AsyncSession, listing: Listing) -> None:
        try:
            async with db.begin_nested():
                await db.execute(_INSERT_LISTING_SQL, _listing_params(listing))
        except IntegrityError as exc:
            if _violated(exc, ACTIVE_ASSET_INDEX):
                raise DuplicateListingError(listing.asset_id) from exc
            raise

    async def save(self, db: AsyncSession, listing: Listing) -> None:
        result = await db.execute(_CAS_UPDATE_LISTING_SQL, _listing_params(listing))
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise StaleListingError(listing.id)
        listing.version += 1

        for bid in listing.bids:
            await db.execute(_UPSERT_BID_SQL, _bid_params(bid))
        try:
            for offer in listing.offers:
                await db.execute(_UPSERT_OFFER_SQL, _offer_params(offer))
        except IntegrityError as exc:
            if _violated(exc, PENDING_OFFER_INDEX):
                raise DuplicateOfferError(listing.id) from exc
            raise

    async def list_listings(
        self,
        db: AsyncSession,
        filters: ListingFilters,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Listing]:
        # asyncpg requires a real datetime object for TIMESTAMPTZ parameters,
        # not an ISO string.  Parse the cursor timestamp here.
        cursor_ts_dt: datetime | None = None
        if cursor_ts is not None:
            cursor_ts_dt = datetime.fromisoformat(cursor_ts)

        result = await db.execute(
            _LIST_LISTINGS_SQL,
            {
                "status": filters.status,
                "kind": filters.kind,
                "currency": filters.currency,
                "seller_id": filters.seller_id,
                "asset_id": filters.asset_id,
                "event_id": filters.event_id,
                "min_price": filters.min_price,
                "max_price": filters.max_price,
                "search": filters.search,
                "cursor_ts": cursor_ts_dt,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return await self._hydrate(db, result.fetchall())

    async def list_due_ids(self, db: AsyncSession, now: datetime, limit: int) -> list[str]:
        result = await db.execute(_LIST_DUE_IDS_SQL, {"now": now, "limit": limit})
        return [row.id for row in result.fetchall()]

    async def defer_sweep(self, db: AsyncSession, listing_id: str, retry_at: datetime) -> None:
        await db.execute(_DEFER_SWEEP_SQL, {"listing_id": listing_id, "retry_at": retry_at})

    async def increment_view_count(self, db: AsyncSession, listing_id: str) -> None:
        await db.execute(_INCREMENT_VIEWS_SQL, {"listing_id": listing_id})

    async def _hydrate(self, db: AsyncSession, rows: list[Any]) -> list[Listing]:
        """Attach bid logs and offers to listing rows in two queries."""
        if not rows:
            return []
        ids = [row.id for row in rows]
        bids: dict[str, list[Bid]] = {i: [] for i in ids}
        offers: dict[str, list[Offer]] = {i: [] for i in ids}

        auction_ids = [row.id for row in rows if row.kind == "AUCTION"]
        if auction_ids:
            bid_rows = (
                await db.execute(_BIDS_FOR_LISTINGS_SQL, {"listing_ids": auction_ids})
            ).fetchall()
            for bid_row in bid_rows:
                bids[bid_row.listing_id].append(_row_to_bid(bid_row))

        offer_ids = [row.id for row in rows if row.kind != "AUCTION"]
        if offer_ids:
            offer_rows = (
                await db.execute(_OFFERS_FOR_LISTINGS_SQL, {"listing_ids": offer_ids})
            ).fetchall()
            for offer_row in offer_rows:
                offers[offer_row.listing_id].append(_row_to_offer(offer_row))

        return [_row_to_listing(row, bids[row.id], offers[row.id]) for row in rows]
