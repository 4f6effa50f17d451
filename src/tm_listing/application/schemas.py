"""Pydantic schemas for the listing API.

Cursor format for listings (VARCHAR PK, not sequential):
  {"ts": "<created_at ISO>", "id": "<listing_id>"}
  Encoded as Base64 JSON string.

Amounts are ints in the currency's minor unit.
"""

import base64
import json
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from src.tm_common.enums import Currency, ListingKind
from src.tm_common.money import format_amount
from src.tm_listing.domain.models import (
    AuctionTerms,
    Bid,
    FixedPriceTerms,
    Listing,
    ListingDraft,
    Offer,
    OfferBasedTerms,
)
from src.tm_settlement.domain.fee import FeeBreakdown
from src.tm_settlement.domain.models import ReconciliationItem, SettlementResult

# ---------------------------------------------------------------------------
# Cursor utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_listing: Listing) -> str:
    """Encode composite cursor from last listing in page."""
    payload = {
        "ts": last_listing.created_at.isoformat() if last_listing.created_at else "",
        "id": last_listing.id,
    }
    return base64.b64encode(json.dumps(payload).encode()).decode()


def cursor_decode(cursor: str | None) -> tuple[str | None, str | None]:
    """Decode composite cursor -> (ts_iso, listing_id), or (None, None) on error."""
    if cursor is None:
        return None, None
    try:
        data = json.loads(base64.b64decode(cursor.encode()).decode())
        return data["ts"], data["id"]
    except Exception:
        return None, None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    asset_id: str = Field(..., min_length=1, max_length=64)
    kind: ListingKind
    currency: Currency = Currency.USDC
    price: int | None = Field(None, description="Fixed price, or auction starting price")
    minimum_offer: int | None = None
    reserve_price: int | None = None
    minimum_bid_increment: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    auto_extend: bool = True
    extension_window_minutes: int | None = None
    allow_offers: bool | None = None
    auto_accept_threshold: int | None = None
    expires_at: datetime | None = None
    description: str = ""

    def to_draft(self, seller_id: str) -> ListingDraft:
        return ListingDraft(
            asset_id=self.asset_id,
            seller_id=seller_id,
            kind=self.kind,
            currency=self.currency.value,
            price=self.price,
            minimum_offer=self.minimum_offer,
            reserve_price=self.reserve_price,
            minimum_bid_increment=self.minimum_bid_increment,
            start_time=self.start_time,
            end_time=self.end_time,
            auto_extend=self.auto_extend,
            extension_window=(
                timedelta(minutes=self.extension_window_minutes)
                if self.extension_window_minutes is not None
                else None
            ),
            allow_offers=self.allow_offers,
            auto_accept_threshold=self.auto_accept_threshold,
            expires_at=self.expires_at,
            description=self.description,
        )


class UpdateListingRequest(BaseModel):
    price: int | None = Field(None, gt=0)
    description: str | None = None
    auto_accept_threshold: int | None = Field(None, gt=0)


class PlaceBidRequest(BaseModel):
    amount: int = Field(..., gt=0)
    escrow_ref: str | None = Field(None, description="On-chain hold backing this bid")


class MakeOfferRequest(BaseModel):
    amount: int = Field(..., gt=0)
    expires_at: datetime
    message: str = ""


class CounterOfferRequest(BaseModel):
    counter_amount: int = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class FeeBreakdownOut(BaseModel):
    price: int
    royalty_fee: int
    platform_fee: int
    total_fees: int
    seller_proceeds: int
    royalty_bps: int
    platform_fee_bps: int

    @classmethod
    def from_domain(cls, fees: FeeBreakdown) -> "FeeBreakdownOut":
        return cls(**fees.to_dict())


class BidOut(BaseModel):
    id: str
    bidder_id: str
    amount: int
    sequence: int
    is_winning: bool
    placed_at: str

    @classmethod
    def from_domain(cls, bid: Bid) -> "BidOut":
        return cls(
            id=bid.id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            sequence=bid.sequence,
            is_winning=bid.is_winning,
            placed_at=bid.placed_at.isoformat(),
        )


class OfferOut(BaseModel):
    id: str
    listing_id: str
    offerer_id: str
    amount: int
    status: str
    message: str
    counter_amount: int | None
    expires_at: str
    created_at: str
    resolved_at: str | None

    @classmethod
    def from_domain(cls, offer: Offer) -> "OfferOut":
        return cls(
            id=offer.id,
            listing_id=offer.listing_id,
            offerer_id=offer.offerer_id,
            amount=offer.amount,
            status=offer.status.value,
            message=offer.message,
            counter_amount=offer.counter_amount,
            expires_at=offer.expires_at.isoformat(),
            created_at=offer.created_at.isoformat(),
            resolved_at=_iso(offer.resolved_at),
        )


class AuctionOut(BaseModel):
    starting_price: int
    reserve_price: int | None
    reserve_met: bool
    minimum_bid_increment: int
    minimum_next_bid: int
    current_bid: int | None
    winning_bid_id: str | None
    start_time: str
    end_time: str
    auto_extend: bool
    extension_window_minutes: int
    bids: list[BidOut]

    @classmethod
    def from_domain(cls, terms: AuctionTerms) -> "AuctionOut":
        return cls(
            starting_price=terms.starting_price,
            reserve_price=terms.reserve_price,
            reserve_met=terms.reserve_met,
            minimum_bid_increment=terms.minimum_bid_increment,
            minimum_next_bid=terms.minimum_next_bid,
            current_bid=terms.current_bid if terms.winning_bid_id else None,
            winning_bid_id=terms.winning_bid_id,
            start_time=terms.start_time.isoformat(),
            end_time=terms.end_time.isoformat(),
            auto_extend=terms.auto_extend,
            extension_window_minutes=int(terms.extension_window.total_seconds() // 60),
            bids=[BidOut.from_domain(b) for b in sorted(terms.bids, key=lambda b: b.sequence)],
        )


class SettlementOut(BaseModel):
    listing_id: str
    status: str
    buyer_id: str
    final_price: int
    fees: FeeBreakdownOut
    transaction_ref: str | None
    completed_at: str | None
    reconciliation_id: str | None

    @classmethod
    def from_domain(cls, result: SettlementResult) -> "SettlementOut":
        return cls(
            listing_id=result.listing_id,
            status=result.status.value,
            buyer_id=result.buyer_id,
            final_price=result.final_price,
            fees=FeeBreakdownOut.from_domain(result.fees),
            transaction_ref=result.transaction_ref,
            completed_at=_iso(result.completed_at),
            reconciliation_id=result.reconciliation_id,
        )


class ListingListItem(BaseModel):
    id: str
    asset_id: str
    event_id: str | None
    seller_id: str
    kind: str
    status: str
    currency: str
    asking_price: int | None
    asking_price_display: str | None
    end_time: str | None
    expires_at: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingListItem":
        price = listing.asking_price
        auction = listing.auction
        return cls(
            id=listing.id,
            asset_id=listing.asset_id,
            event_id=listing.event_id,
            seller_id=listing.seller_id,
            kind=listing.kind.value,
            status=listing.status.value,
            currency=listing.currency,
            asking_price=price,
            asking_price_display=(
                format_amount(price, listing.currency) if price is not None else None
            ),
            end_time=auction.end_time.isoformat() if auction else None,
            expires_at=_iso(listing.expires_at),
            created_at=_iso(listing.created_at),
        )


class ListingDetail(ListingListItem):
    description: str
    royalty_bps: int
    platform_fee_bps: int
    allow_offers: bool
    minimum_offer: int | None
    auto_accept_threshold: int | None
    auction: AuctionOut | None
    pending_offer_count: int
    sale_in_progress: bool
    settlement: dict[str, Any] | None
    close_reason: str | None
    closed_at: str | None
    view_count: int
    bid_count: int
    offer_count: int
    version: int

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingDetail":
        base = ListingListItem.from_domain(listing).model_dump()
        terms = listing.terms
        minimum_offer = terms.minimum_offer if isinstance(terms, OfferBasedTerms) else None
        threshold = (
            terms.auto_accept_threshold
            if isinstance(terms, (FixedPriceTerms, OfferBasedTerms))
            else None
        )
        return cls(
            **base,
            description=listing.description,
            royalty_bps=listing.fees.royalty_bps,
            platform_fee_bps=listing.fees.platform_fee_bps,
            allow_offers=terms.accepts_offers,
            minimum_offer=minimum_offer,
            auto_accept_threshold=threshold,
            auction=AuctionOut.from_domain(terms) if isinstance(terms, AuctionTerms) else None,
            pending_offer_count=len(listing.pending_offers()),
            sale_in_progress=listing.pending_sale is not None,
            settlement=listing.settlement.to_dict() if listing.settlement else None,
            close_reason=listing.close_reason,
            closed_at=_iso(listing.closed_at),
            view_count=listing.analytics.view_count,
            bid_count=listing.analytics.bid_count,
            offer_count=listing.analytics.offer_count,
            version=listing.version,
        )


class ListingListResponse(BaseModel):
    items: list[ListingListItem]
    next_cursor: str | None
    has_more: bool


class ReconciliationItemOut(BaseModel):
    id: str
    kind: str
    listing_id: str
    status: str
    attempts: int
    last_error: str | None
    payload: dict[str, Any]
    next_attempt_at: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, item: ReconciliationItem) -> "ReconciliationItemOut":
        return cls(
            id=item.id,
            kind=item.kind.value,
            listing_id=item.listing_id,
            status=item.status.value,
            attempts=item.attempts,
            last_error=item.last_error,
            payload=item.payload,
            next_attempt_at=_iso(item.next_attempt_at),
            created_at=_iso(item.created_at),
        )
