"""ListingService: the API facade for listing lifecycle operations.

Create, update and cancel follow one pattern: local state first under the
exclusive section, escrow afterwards outside it. Buy-now hands off to the
settlement coordinator. Reads go through the injectable listing cache.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import ListingEventType, ListingKind, ReconciliationKind, SaleSource
from src.tm_common.errors import (
    DuplicateListingError,
    InvalidUpdateError,
    ListingValidationError,
    NotListingOwnerError,
    PurchaseNotAllowedError,
    SelfPurchaseError,
)
from src.tm_common.id_generator import new_listing_id
from src.tm_common.money import format_amount
from src.tm_common.policy import MAX_DESCRIPTION_LENGTH, MarketplaceConfig
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_listing.application.escrow_sync import EscrowSync
from src.tm_listing.application.schemas import (
    ListingDetail,
    ListingListItem,
    ListingListResponse,
    cursor_decode,
    cursor_encode,
)
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import (
    AuctionTerms,
    FeeSchedule,
    FixedPriceTerms,
    Listing,
    ListingDraft,
    ListingTerms,
    OfferBasedTerms,
)
from src.tm_listing.domain.repository import ListingFilters
from src.tm_listing.domain.state_machine import cancel, ensure_open, refundable_bids
from src.tm_risk.validator import ListingValidator
from src.tm_settlement.application.coordinator import SettlementCoordinator
from src.tm_settlement.domain.models import SettlementResult
from src.tm_ticket.domain.models import EventInfo

logger = logging.getLogger(__name__)

DEFAULT_BID_INCREMENT = 1


def build_terms(draft: ListingDraft, config: MarketplaceConfig, now: datetime) -> ListingTerms:
    if draft.kind == ListingKind.FIXED_PRICE:
        if draft.price is None:
            raise ListingValidationError(["Price is required for fixed-price listings"])
        return FixedPriceTerms(
            price=draft.price,
            allow_offers=True if draft.allow_offers is None else draft.allow_offers,
            auto_accept_threshold=draft.auto_accept_threshold,
        )
    if draft.kind == ListingKind.OFFER_BASED:
        return OfferBasedTerms(
            minimum_offer=draft.minimum_offer,
            auto_accept_threshold=draft.auto_accept_threshold,
        )
    if draft.price is None or draft.end_time is None:
        raise ListingValidationError(["Auction listings need a starting price and end time"])
    return AuctionTerms(
        starting_price=draft.price,
        reserve_price=draft.reserve_price,
        minimum_bid_increment=draft.minimum_bid_increment or DEFAULT_BID_INCREMENT,
        start_time=draft.start_time or now,
        end_time=draft.end_time,
        auto_extend=draft.auto_extend,
        extension_window=draft.extension_window or config.default_extension_window,
    )


def build_listing(
    draft: ListingDraft, event: EventInfo, config: MarketplaceConfig, now: datetime
) -> Listing:
    """Assemble a validated draft into a new ACTIVE listing with snapshotted fee rates."""
    return Listing(
        id=new_listing_id(),
        asset_id=draft.asset_id,
        seller_id=draft.seller_id,
        currency=draft.currency,
        terms=build_terms(draft, config, now),
        fees=FeeSchedule(
            royalty_bps=event.royalty_bps,
            platform_fee_bps=config.platform_fee_bps,
            royalty_recipient_id=event.royalty_recipient_id,
        ),
        event_id=event.id,
        description=draft.description,
        expires_at=draft.expires_at if draft.kind != ListingKind.AUCTION else None,
        created_at=now,
        updated_at=now,
    )


def _require_seller(listing: Listing, seller_id: str) -> None:
    if listing.seller_id != seller_id:
        raise NotListingOwnerError(listing.id)


class ListingService:
    def __init__(
        self,
        store: ListingStore,
        validator: ListingValidator,
        coordinator: SettlementCoordinator,
        escrow: EscrowServiceProtocol,
        escrow_sync: EscrowSync,
        config: MarketplaceConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._validator = validator
        self._coordinator = coordinator
        self._escrow = escrow
        self._escrow_sync = escrow_sync
        self._config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_listing(self, db: AsyncSession, draft: ListingDraft) -> Listing:
        async with self._store.asset_section(draft.asset_id):
            try:
                existing = await self._store.repo.get_active_for_asset(db, draft.asset_id)
                if existing is not None:
                    raise DuplicateListingError(draft.asset_id)
                result = await self._validator.validate_listing_request(db, draft)
            except BaseException:
                await db.rollback()
                raise
            if not result.ok or result.event is None:
                await db.rollback()
                logger.info(
                    "Listing request for ticket %s rejected: %s", draft.asset_id, result.reasons
                )
                raise ListingValidationError(result.reasons)

            listing = build_listing(draft, result.event, self._config, self._clock())
            try:
                ref = await self._escrow_sync.call(
                    lambda: self._escrow.create_escrow_listing(
                        listing.asset_id,
                        listing.asking_price or 0,
                        listing.kind.value,
                        listing.seller_id,
                        idempotency_key=listing.id,
                    ),
                    f"escrow create {listing.id}",
                )
            except BaseException:
                await db.rollback()
                raise
            listing.escrow_ref = ref.ref

            try:
                await self._store.create(db, listing)
            except Exception:
                logger.warning(
                    "Listing %s could not be stored; releasing escrow listing %s",
                    listing.id, ref.ref,
                )
                await self._escrow_sync.cancel_or_queue(
                    db, listing.id, ref.ref, kind=ReconciliationKind.ORPHAN_ESCROW_LISTING
                )
                raise
        return listing

    # ------------------------------------------------------------------
    # Update / cancel
    # ------------------------------------------------------------------

    async def update_listing(
        self,
        db: AsyncSession,
        listing_id: str,
        seller_id: str,
        price: int | None = None,
        description: str | None = None,
        auto_accept_threshold: int | None = None,
    ) -> Listing:
        if price is None and description is None and auto_accept_threshold is None:
            raise InvalidUpdateError("nothing to update")
        price_changed = False
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            _require_seller(listing, seller_id)
            ensure_open(listing)
            changes: dict[str, object] = {}
            if price is not None and price != listing.asking_price:
                self._apply_price(listing, price)
                changes["price"] = price
                price_changed = True
            if description is not None:
                if len(description) > MAX_DESCRIPTION_LENGTH:
                    raise InvalidUpdateError(
                        f"description exceeds {MAX_DESCRIPTION_LENGTH} characters"
                    )
                listing.description = description
                changes["description"] = description
            if auto_accept_threshold is not None:
                if not isinstance(listing.terms, (FixedPriceTerms, OfferBasedTerms)):
                    raise InvalidUpdateError("auction listings do not accept offers")
                listing.terms.auto_accept_threshold = auto_accept_threshold
                changes["auto_accept_threshold"] = auto_accept_threshold
            listing.touch(now)
            await self._store.events.append(
                db, listing.id, ListingEventType.LISTING_UPDATED, changes
            )
            escrow_ref = listing.escrow_ref
            new_price = listing.asking_price

        logger.info("Listing %s updated: %s", listing_id, ", ".join(changes))
        if price_changed and escrow_ref is not None and new_price is not None:
            await self._escrow_sync.update_price_or_queue(db, listing_id, escrow_ref, new_price)
        return listing

    def _apply_price(self, listing: Listing, price: int) -> None:
        terms = listing.terms
        if isinstance(terms, OfferBasedTerms):
            terms.minimum_offer = price
            return
        if price < self._config.min_listing_price:
            raise InvalidUpdateError(
                "price must be at least "
                f"{format_amount(self._config.min_listing_price, listing.currency)}"
            )
        if isinstance(terms, FixedPriceTerms):
            terms.price = price
            return
        if terms.bids:
            raise InvalidUpdateError("starting price cannot change once bidding has started")
        if terms.reserve_price is not None and terms.reserve_price < price:
            raise InvalidUpdateError("starting price cannot exceed the reserve price")
        terms.starting_price = price
        terms.current_bid = price

    async def cancel_listing(self, db: AsyncSession, listing_id: str, seller_id: str) -> Listing:
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            _require_seller(listing, seller_id)
            rejected = cancel(listing, now)
            events = self._store.events
            for offer in rejected:
                await events.append(
                    db,
                    listing.id,
                    ListingEventType.OFFER_REJECTED,
                    {"offer_id": offer.id, "offerer_id": offer.offerer_id,
                     "reason": "listing_cancelled"},
                )
            for bid in refundable_bids(listing):
                await events.append(
                    db,
                    listing.id,
                    ListingEventType.BID_REFUND_DUE,
                    {"bid_id": bid.id, "bidder_id": bid.bidder_id, "amount": bid.amount,
                     "escrow_ref": bid.escrow_ref},
                )
            await self._store.registry.release(db, listing.asset_id, listing.id)
            await events.append(
                db,
                listing.id,
                ListingEventType.LISTING_CANCELLED,
                {"asset_id": listing.asset_id, "seller_id": seller_id},
            )
            escrow_ref = listing.escrow_ref

        logger.info("Listing %s cancelled by seller %s", listing_id, seller_id)
        if escrow_ref is not None:
            await self._escrow_sync.cancel_or_queue(db, listing_id, escrow_ref)
        return listing

    # ------------------------------------------------------------------
    # Buy-now
    # ------------------------------------------------------------------

    async def purchase_listing(
        self, db: AsyncSession, listing_id: str, buyer_id: str
    ) -> SettlementResult:
        listing = await self._store.load(db, listing_id)
        terms = listing.terms
        if not isinstance(terms, FixedPriceTerms):
            raise PurchaseNotAllowedError(listing_id)
        price = terms.price

        def precheck(current: Listing) -> None:
            if not isinstance(current.terms, FixedPriceTerms):
                raise PurchaseNotAllowedError(current.id)
            if current.seller_id == buyer_id:
                raise SelfPurchaseError()
            ensure_open(current)
            if current.terms.price != price:
                raise InvalidUpdateError("price changed; reload the listing and retry")

        return await self._coordinator.complete_sale(
            db,
            listing_id,
            buyer_id,
            price,
            source=SaleSource.PURCHASE,
            precheck=precheck,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_listing(self, db: AsyncSession, listing_id: str) -> ListingDetail:
        cache = self._store.cache
        cached = await cache.get_listing(listing_id)
        if cached is not None:
            detail = ListingDetail(**cached)
        else:
            listing = await self._store.load(db, listing_id)
            detail = ListingDetail.from_domain(listing)
            await cache.set_listing(listing_id, detail.model_dump())
        try:
            await self._store.repo.increment_view_count(db, listing_id)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.warning("Could not record view of listing %s", listing_id, exc_info=True)
        return detail

    async def get_listings(
        self,
        db: AsyncSession,
        filters: ListingFilters,
        cursor: str | None,
        limit: int,
    ) -> ListingListResponse:
        cache = self._store.cache
        query_key = f"{filters.cache_key()}|{cursor or ''}|{limit}"
        cached = await cache.get_query(query_key)
        if cached is not None:
            return ListingListResponse(**cached)

        cursor_ts, cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without COUNT(*)
        listings = await self._store.repo.list_listings(
            db, filters, cursor_ts, cursor_id, limit + 1
        )
        has_more = len(listings) > limit
        page = listings[:limit]
        response = ListingListResponse(
            items=[ListingListItem.from_domain(item) for item in page],
            next_cursor=cursor_encode(page[-1]) if has_more and page else None,
            has_more=has_more,
        )
        await cache.set_query(query_key, response.model_dump())
        return response
