"""AuctionEngine: bid acceptance under the listing's exclusive section.

The bid log is append-only. The winning pointer (winning_bid_id, current_bid)
is materialized on the terms and only moves forward, so current_bid is
monotonically non-decreasing and equals the highest accepted bid.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import ListingEventType
from src.tm_common.errors import (
    AuctionEndedError,
    AuctionNotStartedError,
    BidsNotAllowedError,
    BidTooLowError,
    SelfBidError,
)
from src.tm_common.id_generator import new_bid_id
from src.tm_common.money import format_amount
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import AuctionTerms, Bid, Listing
from src.tm_listing.domain.state_machine import ensure_active, ensure_no_pending_sale

logger = logging.getLogger(__name__)


def check_bid(listing: Listing, bidder_id: str, amount: int, now: datetime) -> AuctionTerms:
    """Run the bid preconditions in order and return the auction terms."""
    ensure_active(listing)
    terms = listing.auction
    if terms is None:
        raise BidsNotAllowedError(listing.id)
    ensure_no_pending_sale(listing)
    if now >= terms.end_time:
        raise AuctionEndedError(listing.id)
    if now < terms.start_time:
        raise AuctionNotStartedError(listing.id)
    if bidder_id == listing.seller_id:
        raise SelfBidError()
    minimum = terms.minimum_next_bid
    if amount < minimum:
        raise BidTooLowError(minimum, format_amount(minimum, listing.currency))
    return terms


def apply_bid(terms: AuctionTerms, bid: Bid, now: datetime) -> bool:
    """Append `bid` as the new winner. Returns True if the auction was extended."""
    previous = terms.winning_bid
    if previous is not None:
        previous.is_winning = False
    bid.is_winning = True
    terms.bids.append(bid)
    terms.current_bid = bid.amount
    terms.winning_bid_id = bid.id

    if terms.auto_extend and terms.end_time - now < terms.extension_window:
        terms.end_time = terms.end_time + terms.extension_window
        return True
    return False


class AuctionEngine:
    def __init__(self, store: ListingStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def place_bid(
        self,
        db: AsyncSession,
        listing_id: str,
        bidder_id: str,
        amount: int,
        escrow_ref: str | None = None,
    ) -> Bid:
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            terms = check_bid(listing, bidder_id, amount, now)
            bid = Bid(
                id=new_bid_id(),
                listing_id=listing.id,
                bidder_id=bidder_id,
                amount=amount,
                sequence=terms.next_sequence,
                placed_at=now,
                escrow_ref=escrow_ref,
            )
            extended = apply_bid(terms, bid, now)
            listing.analytics.bid_count += 1
            listing.touch(now)
            await self._store.events.append(
                db,
                listing.id,
                ListingEventType.BID_PLACED,
                {
                    "bid_id": bid.id,
                    "bidder_id": bidder_id,
                    "amount": amount,
                    "sequence": bid.sequence,
                    "end_time": terms.end_time.isoformat(),
                    "extended": extended,
                },
            )

        if extended:
            logger.info(
                "Bid %s on listing %s extended the auction to %s",
                bid.id, listing_id, terms.end_time.isoformat(),
            )
        logger.info(
            "Bid %s accepted on listing %s: %d by %s (seq %d)",
            bid.id, listing_id, amount, bidder_id, bid.sequence,
        )
        return bid
