"""Listing aggregate: pure dataclasses, no SQLAlchemy dependency.

Commercial terms are a closed union. Bids only exist on AuctionTerms and
offers only on FixedPriceTerms / OfferBasedTerms, so a bid on an offer-based
listing cannot even be expressed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import ClassVar, Union

from src.tm_common.enums import (
    ListingKind,
    ListingStatus,
    OfferStatus,
    PendingSaleStage,
    SaleSource,
)
from src.tm_settlement.domain.fee import FeeBreakdown


@dataclass
class Bid:
    id: str
    listing_id: str
    bidder_id: str
    amount: int
    sequence: int  # arrival order at the listing's exclusive section
    placed_at: datetime
    is_winning: bool = True
    escrow_ref: str | None = None  # on-chain hold, refunded if outbid


@dataclass
class Offer:
    id: str
    listing_id: str
    offerer_id: str
    amount: int
    expires_at: datetime
    created_at: datetime
    message: str = ""
    status: OfferStatus = OfferStatus.PENDING
    counter_amount: int | None = None
    countered_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == OfferStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def resolve(self, status: OfferStatus, now: datetime) -> None:
        self.status = status
        self.resolved_at = now


@dataclass
class FixedPriceTerms:
    kind: ClassVar[ListingKind] = ListingKind.FIXED_PRICE

    price: int
    allow_offers: bool = True
    auto_accept_threshold: int | None = None
    offers: list[Offer] = field(default_factory=list)

    @property
    def asking_price(self) -> int:
        return self.price

    @property
    def minimum_offer(self) -> int | None:
        return None

    @property
    def accepts_offers(self) -> bool:
        return self.allow_offers


@dataclass
class OfferBasedTerms:
    kind: ClassVar[ListingKind] = ListingKind.OFFER_BASED

    minimum_offer: int | None = None
    auto_accept_threshold: int | None = None
    offers: list[Offer] = field(default_factory=list)

    @property
    def asking_price(self) -> int | None:
        return self.minimum_offer

    @property
    def accepts_offers(self) -> bool:
        return True


@dataclass
class AuctionTerms:
    kind: ClassVar[ListingKind] = ListingKind.AUCTION

    starting_price: int
    reserve_price: int | None
    minimum_bid_increment: int
    start_time: datetime
    end_time: datetime
    auto_extend: bool = True
    extension_window: timedelta = timedelta(minutes=10)
    current_bid: int | None = None
    winning_bid_id: str | None = None
    bids: list[Bid] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.current_bid is None:
            self.current_bid = self.starting_price

    @property
    def asking_price(self) -> int:
        return self.current_bid if self.current_bid is not None else self.starting_price

    @property
    def accepts_offers(self) -> bool:
        return False

    @property
    def minimum_next_bid(self) -> int:
        current = self.current_bid if self.current_bid is not None else self.starting_price
        return max(current + self.minimum_bid_increment, self.starting_price)

    @property
    def winning_bid(self) -> Bid | None:
        if self.winning_bid_id is None:
            return None
        for bid in self.bids:
            if bid.id == self.winning_bid_id:
                return bid
        return None

    @property
    def reserve_met(self) -> bool:
        winning = self.winning_bid
        if winning is None:
            return False
        return self.reserve_price is None or winning.amount >= self.reserve_price

    @property
    def next_sequence(self) -> int:
        return len(self.bids) + 1


ListingTerms = Union[FixedPriceTerms, OfferBasedTerms, AuctionTerms]


@dataclass(frozen=True)
class FeeSchedule:
    """Rates snapshotted at listing creation."""

    royalty_bps: int
    platform_fee_bps: int
    royalty_recipient_id: str | None = None


@dataclass
class PendingSale:
    """A sale handed to escrow but not yet finalized locally."""

    buyer_id: str
    final_price: int
    source: SaleSource
    started_at: datetime
    reference_id: str | None = None  # winning bid id or accepted offer id
    stage: PendingSaleStage = PendingSaleStage.ESCROW_SUBMITTED
    transaction_ref: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "buyer_id": self.buyer_id,
            "final_price": self.final_price,
            "source": self.source.value,
            "started_at": self.started_at.isoformat(),
            "reference_id": self.reference_id,
            "stage": self.stage.value,
            "transaction_ref": self.transaction_ref,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingSale":
        return cls(
            buyer_id=data["buyer_id"],
            final_price=int(data["final_price"]),
            source=SaleSource(data["source"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            reference_id=data.get("reference_id"),
            stage=PendingSaleStage(data.get("stage", PendingSaleStage.ESCROW_SUBMITTED.value)),
            transaction_ref=data.get("transaction_ref"),
        )


@dataclass
class SettlementRecord:
    buyer_id: str
    final_price: int
    fees: FeeBreakdown
    transaction_ref: str
    completed_at: datetime
    source: SaleSource = SaleSource.DIRECT

    def to_dict(self) -> dict[str, object]:
        return {
            "buyer_id": self.buyer_id,
            "final_price": self.final_price,
            "fees": self.fees.to_dict(),
            "transaction_ref": self.transaction_ref,
            "completed_at": self.completed_at.isoformat(),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SettlementRecord":
        return cls(
            buyer_id=data["buyer_id"],
            final_price=int(data["final_price"]),
            fees=FeeBreakdown.from_dict(data["fees"]),
            transaction_ref=data["transaction_ref"],
            completed_at=datetime.fromisoformat(data["completed_at"]),
            source=SaleSource(data.get("source", SaleSource.DIRECT.value)),
        )


@dataclass
class ListingAnalytics:
    """Observational counters, never used for correctness."""

    view_count: int = 0
    bid_count: int = 0
    offer_count: int = 0
    last_activity_at: datetime | None = None


@dataclass
class Listing:
    id: str
    asset_id: str
    seller_id: str
    currency: str
    terms: ListingTerms
    fees: FeeSchedule
    event_id: str | None = None
    status: ListingStatus = ListingStatus.ACTIVE
    description: str = ""
    escrow_ref: str | None = None
    expires_at: datetime | None = None  # fixed-price / offer-based only
    pending_sale: PendingSale | None = None
    settlement: SettlementRecord | None = None
    analytics: ListingAnalytics = field(default_factory=ListingAnalytics)
    version: int = 0
    closed_at: datetime | None = None
    close_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sweep_retry_at: datetime | None = None  # set when a sweep of this listing fails

    @property
    def kind(self) -> ListingKind:
        return self.terms.kind

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status != ListingStatus.ACTIVE

    @property
    def auction(self) -> AuctionTerms | None:
        return self.terms if isinstance(self.terms, AuctionTerms) else None

    @property
    def offers(self) -> list[Offer]:
        if isinstance(self.terms, (FixedPriceTerms, OfferBasedTerms)):
            return self.terms.offers
        return []

    @property
    def bids(self) -> list[Bid]:
        if isinstance(self.terms, AuctionTerms):
            return self.terms.bids
        return []

    @property
    def asking_price(self) -> int | None:
        return self.terms.asking_price

    def pending_offers(self) -> list[Offer]:
        return [o for o in self.offers if o.is_pending]

    def find_offer(self, offer_id: str) -> Offer | None:
        for offer in self.offers:
            if offer.id == offer_id:
                return offer
        return None

    def next_deadline(self) -> datetime | None:
        """Earliest moment the sweeper has something to resolve on this listing."""
        candidates: list[datetime] = []
        if isinstance(self.terms, AuctionTerms):
            candidates.append(self.terms.end_time)
        elif self.expires_at is not None:
            candidates.append(self.expires_at)
        candidates.extend(o.expires_at for o in self.pending_offers())
        return min(candidates) if candidates else None

    def touch(self, now: datetime) -> None:
        self.updated_at = now
        self.analytics.last_activity_at = now


@dataclass
class ListingDraft:
    """A seller's create request, before validation."""

    asset_id: str
    seller_id: str
    kind: ListingKind
    currency: str
    price: int | None = None  # fixed price, or auction starting price
    minimum_offer: int | None = None
    reserve_price: int | None = None
    minimum_bid_increment: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    auto_extend: bool = True
    extension_window: timedelta | None = None
    allow_offers: bool | None = None  # defaults to kind != AUCTION
    auto_accept_threshold: int | None = None
    expires_at: datetime | None = None
    description: str = ""
