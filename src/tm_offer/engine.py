"""OfferEngine: make, counter, reject and accept offers on a listing.

Every mutation runs inside the listing's exclusive section, so accepting an
offer cannot interleave with cancellation or with another accept. Accepting
reserves the sale under the section; escrow settlement runs after the section
is released.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import ListingEventType, OfferStatus, SaleSource
from src.tm_common.errors import (
    DuplicateOfferError,
    InvalidOfferError,
    NoCounterOfferError,
    NotListingOwnerError,
    NotOfferOwnerError,
    OfferExpiredError,
    OfferNotFoundError,
    OfferNotPendingError,
    OffersNotAllowedError,
    OfferTooLowError,
    SelfOfferError,
)
from src.tm_common.id_generator import new_offer_id
from src.tm_common.money import format_amount
from src.tm_common.policy import MAX_OFFER_MESSAGE_LENGTH
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import FixedPriceTerms, Listing, Offer, OfferBasedTerms
from src.tm_listing.domain.state_machine import ensure_open, reject_pending_offers
from src.tm_settlement.application.coordinator import SettlementCoordinator
from src.tm_settlement.domain.models import SettlementResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OfferOutcome:
    offer: Offer
    settlement: SettlementResult | None = None  # set when the offer was auto-accepted


def minimum_offer_for(listing: Listing) -> int:
    terms = listing.terms
    if isinstance(terms, OfferBasedTerms) and terms.minimum_offer is not None:
        return terms.minimum_offer
    return 1


def _auto_accept_threshold(listing: Listing) -> int | None:
    terms = listing.terms
    if isinstance(terms, (FixedPriceTerms, OfferBasedTerms)):
        return terms.auto_accept_threshold
    return None


def _require_seller(listing: Listing, actor_id: str | None) -> None:
    if actor_id is not None and actor_id != listing.seller_id:
        raise NotListingOwnerError(listing.id)


def _pending_offer(listing: Listing, offer_id: str) -> Offer:
    offer = listing.find_offer(offer_id)
    if offer is None:
        raise OfferNotFoundError(offer_id)
    if not offer.is_pending:
        raise OfferNotPendingError(offer_id, offer.status.value)
    return offer


class OfferEngine:
    def __init__(
        self,
        store: ListingStore,
        coordinator: SettlementCoordinator,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._clock = clock

    async def make_offer(
        self,
        db: AsyncSession,
        listing_id: str,
        offerer_id: str,
        amount: int,
        expires_at: datetime,
        message: str = "",
    ) -> OfferOutcome:
        auto_accepted = False
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            ensure_open(listing)
            if not listing.terms.accepts_offers:
                raise OffersNotAllowedError(listing.id)
            if offerer_id == listing.seller_id:
                raise SelfOfferError()
            minimum = minimum_offer_for(listing)
            if amount < minimum:
                raise OfferTooLowError(minimum, format_amount(minimum, listing.currency))
            if any(o.offerer_id == offerer_id for o in listing.pending_offers()):
                raise DuplicateOfferError(listing.id)
            if expires_at <= now:
                raise InvalidOfferError("expiry must be in the future")
            if len(message) > MAX_OFFER_MESSAGE_LENGTH:
                raise InvalidOfferError(
                    f"message exceeds {MAX_OFFER_MESSAGE_LENGTH} characters"
                )

            offer = Offer(
                id=new_offer_id(),
                listing_id=listing.id,
                offerer_id=offerer_id,
                amount=amount,
                expires_at=expires_at,
                created_at=now,
                message=message,
            )
            listing.offers.append(offer)
            listing.analytics.offer_count += 1
            listing.touch(now)
            await self._store.events.append(
                db,
                listing.id,
                ListingEventType.OFFER_MADE,
                {"offer_id": offer.id, "offerer_id": offerer_id, "amount": amount,
                 "expires_at": expires_at.isoformat()},
            )

            threshold = _auto_accept_threshold(listing)
            if threshold is not None and amount >= threshold:
                await self._accept_locked(db, listing, offer, amount, now)
                auto_accepted = True

        logger.info(
            "Offer %s made on listing %s: %d by %s", offer.id, listing_id, amount, offerer_id
        )
        if not auto_accepted:
            return OfferOutcome(offer=offer)
        logger.info("Offer %s auto-accepted (threshold %s)", offer.id, threshold)
        result = await self._coordinator.settle_reserved(db, listing_id)
        return OfferOutcome(offer=offer, settlement=result)

    async def accept_offer(
        self,
        db: AsyncSession,
        listing_id: str,
        offer_id: str,
        actor_id: str | None = None,
    ) -> SettlementResult:
        """Seller accepts a pending offer at the offered amount."""
        return await self._accept(db, listing_id, offer_id, actor_id, counter=False)

    async def accept_counter_offer(
        self, db: AsyncSession, listing_id: str, offer_id: str, offerer_id: str
    ) -> SettlementResult:
        """Offerer accepts the seller's counter; the sale settles at the counter amount."""
        return await self._accept(db, listing_id, offer_id, offerer_id, counter=True)

    async def _accept(
        self,
        db: AsyncSession,
        listing_id: str,
        offer_id: str,
        actor_id: str | None,
        counter: bool,
    ) -> SettlementResult:
        expired = False
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            ensure_open(listing)
            offer = _pending_offer(listing, offer_id)
            if counter:
                if actor_id != offer.offerer_id:
                    raise NotOfferOwnerError(offer_id)
                if offer.counter_amount is None:
                    raise NoCounterOfferError(offer_id)
                price = offer.counter_amount
            else:
                _require_seller(listing, actor_id)
                price = offer.amount

            if offer.is_expired(now):
                # Persist the expiry before reporting it.
                offer.resolve(OfferStatus.EXPIRED, now)
                listing.touch(now)
                await self._store.events.append(
                    db,
                    listing.id,
                    ListingEventType.OFFER_EXPIRED,
                    {"offer_id": offer.id, "offerer_id": offer.offerer_id},
                )
                expired = True
            else:
                await self._accept_locked(db, listing, offer, price, now)

        if expired:
            raise OfferExpiredError(offer_id)
        logger.info(
            "Offer %s accepted on listing %s at %d%s",
            offer_id, listing_id, price, " (counter)" if counter else "",
        )
        return await self._coordinator.settle_reserved(db, listing_id)

    async def _accept_locked(
        self, db: AsyncSession, listing: Listing, offer: Offer, price: int, now: datetime
    ) -> None:
        """Accept `offer` and reserve the sale. Caller holds the section."""
        offer.resolve(OfferStatus.ACCEPTED, now)
        rejected = reject_pending_offers(listing, now, keep_offer_id=offer.id)
        await self._coordinator.hold_sale(
            db, listing, offer.offerer_id, price, SaleSource.OFFER, reference_id=offer.id
        )
        events = self._store.events
        await events.append(
            db,
            listing.id,
            ListingEventType.OFFER_ACCEPTED,
            {"offer_id": offer.id, "offerer_id": offer.offerer_id, "price": price},
        )
        for other in rejected:
            await events.append(
                db,
                listing.id,
                ListingEventType.OFFER_REJECTED,
                {"offer_id": other.id, "offerer_id": other.offerer_id,
                 "reason": "another_offer_accepted"},
            )

    async def reject_offer(
        self,
        db: AsyncSession,
        listing_id: str,
        offer_id: str,
        actor_id: str | None = None,
    ) -> Offer:
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            ensure_open(listing)
            _require_seller(listing, actor_id)
            offer = _pending_offer(listing, offer_id)
            offer.resolve(OfferStatus.REJECTED, now)
            listing.touch(now)
            await self._store.events.append(
                db,
                listing.id,
                ListingEventType.OFFER_REJECTED,
                {"offer_id": offer.id, "offerer_id": offer.offerer_id,
                 "reason": "rejected_by_seller"},
            )
        logger.info("Offer %s rejected on listing %s", offer_id, listing_id)
        return offer

    async def counter_offer(
        self,
        db: AsyncSession,
        listing_id: str,
        offer_id: str,
        counter_amount: int,
        actor_id: str | None = None,
    ) -> Offer:
        """Seller proposes a different price. The offer stays PENDING."""
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            ensure_open(listing)
            _require_seller(listing, actor_id)
            offer = _pending_offer(listing, offer_id)
            if offer.is_expired(now):
                raise OfferExpiredError(offer_id)
            minimum = minimum_offer_for(listing)
            if counter_amount < minimum:
                raise OfferTooLowError(minimum, format_amount(minimum, listing.currency))
            offer.counter_amount = counter_amount
            offer.countered_at = now
            listing.touch(now)
            await self._store.events.append(
                db,
                listing.id,
                ListingEventType.OFFER_COUNTERED,
                {"offer_id": offer.id, "offerer_id": offer.offerer_id,
                 "amount": offer.amount, "counter_amount": counter_amount},
            )
        logger.info(
            "Seller countered offer %s on listing %s with %d", offer_id, listing_id, counter_amount
        )
        return offer
