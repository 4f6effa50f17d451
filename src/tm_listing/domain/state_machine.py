"""Listing status transitions.

ACTIVE is the only non-terminal state. SOLD, CANCELLED and EXPIRED are
absorbing: nothing leaves them, and only settlement may enter SOLD.
"""

from datetime import datetime

from src.tm_common.enums import ListingStatus, OfferStatus
from src.tm_common.errors import ListingNotActiveError, SaleInProgressError
from src.tm_listing.domain.models import Bid, Listing, Offer, SettlementRecord

ALLOWED_TRANSITIONS: dict[ListingStatus, frozenset[ListingStatus]] = {
    ListingStatus.ACTIVE: frozenset(
        {ListingStatus.SOLD, ListingStatus.CANCELLED, ListingStatus.EXPIRED}
    ),
    ListingStatus.SOLD: frozenset(),
    ListingStatus.CANCELLED: frozenset(),
    ListingStatus.EXPIRED: frozenset(),
}


def can_transition(current: ListingStatus, target: ListingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_active(listing: Listing) -> None:
    if not listing.is_active:
        raise ListingNotActiveError(listing.id, listing.status.value)


def ensure_no_pending_sale(listing: Listing) -> None:
    if listing.pending_sale is not None:
        raise SaleInProgressError(listing.id)


def ensure_open(listing: Listing) -> None:
    """Listing may take bids, offers and edits."""
    ensure_active(listing)
    ensure_no_pending_sale(listing)


def _transition(listing: Listing, target: ListingStatus, reason: str, now: datetime) -> None:
    if not can_transition(listing.status, target):
        raise ListingNotActiveError(listing.id, listing.status.value)
    listing.status = target
    listing.close_reason = reason
    listing.closed_at = now
    listing.updated_at = now


def cancel(listing: Listing, now: datetime, reason: str = "cancelled_by_seller") -> list[Offer]:
    """ACTIVE -> CANCELLED. Returns the offers it rejected.

    A SOLD listing raises SaleInProgressError: the sale won the race.
    """
    if listing.status == ListingStatus.SOLD:
        raise SaleInProgressError(listing.id)
    ensure_open(listing)
    rejected = reject_pending_offers(listing, now)
    _transition(listing, ListingStatus.CANCELLED, reason, now)
    return rejected


def expire(listing: Listing, now: datetime, reason: str) -> list[Offer]:
    """ACTIVE -> EXPIRED. Returns the offers it rejected."""
    ensure_open(listing)
    rejected = reject_pending_offers(listing, now)
    _transition(listing, ListingStatus.EXPIRED, reason, now)
    return rejected


def mark_sold(listing: Listing, record: SettlementRecord, now: datetime) -> None:
    """ACTIVE (with a pending sale) -> SOLD. Called only by settlement."""
    _transition(listing, ListingStatus.SOLD, f"sold_via_{record.source.value.lower()}", now)
    listing.settlement = record
    listing.pending_sale = None


def reject_pending_offers(
    listing: Listing, now: datetime, keep_offer_id: str | None = None
) -> list[Offer]:
    rejected: list[Offer] = []
    for offer in listing.pending_offers():
        if offer.id == keep_offer_id:
            continue
        offer.resolve(OfferStatus.REJECTED, now)
        rejected.append(offer)
    return rejected


def expire_due_offers(listing: Listing, now: datetime) -> list[Offer]:
    expired: list[Offer] = []
    for offer in listing.pending_offers():
        if offer.is_expired(now):
            offer.resolve(OfferStatus.EXPIRED, now)
            expired.append(offer)
    return expired


def refundable_bids(listing: Listing, exclude_bid_id: str | None = None) -> list[Bid]:
    """Bids carrying an on-chain hold that must be released."""
    return [
        b for b in listing.bids
        if b.escrow_ref is not None and b.id != exclude_bid_id
    ]
