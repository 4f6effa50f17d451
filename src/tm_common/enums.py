"""Global enums; values must match DB CHECK constraints exactly."""

from enum import Enum


class Currency(str, Enum):
    SOL = "SOL"
    USD = "USD"
    USDC = "USDC"
    ETH = "ETH"


class ListingKind(str, Enum):
    FIXED_PRICE = "FIXED_PRICE"
    AUCTION = "AUCTION"
    OFFER_BASED = "OFFER_BASED"


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class OfferStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class SaleSource(str, Enum):
    """What handed the listing to settlement."""
    PURCHASE = "PURCHASE"
    OFFER = "OFFER"
    AUCTION = "AUCTION"
    DIRECT = "DIRECT"


class PendingSaleStage(str, Enum):
    ESCROW_SUBMITTED = "ESCROW_SUBMITTED"
    ESCROW_FAILED = "ESCROW_FAILED"


class SettlementStatus(str, Enum):
    COMPLETED = "COMPLETED"
    QUEUED = "QUEUED"


class TicketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LISTED = "LISTED"


class EventStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    CONCLUDED = "CONCLUDED"


class ReconciliationKind(str, Enum):
    SETTLEMENT_RETRY = "SETTLEMENT_RETRY"
    FINALIZE_SALE = "FINALIZE_SALE"
    ESCROW_CANCEL = "ESCROW_CANCEL"
    ESCROW_PRICE_SYNC = "ESCROW_PRICE_SYNC"
    ORPHAN_ESCROW_LISTING = "ORPHAN_ESCROW_LISTING"


class ReconciliationStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    MANUAL = "MANUAL"


class ListingEventType(str, Enum):
    LISTING_CREATED = "LISTING_CREATED"
    LISTING_UPDATED = "LISTING_UPDATED"
    LISTING_CANCELLED = "LISTING_CANCELLED"
    LISTING_EXPIRED = "LISTING_EXPIRED"
    BID_PLACED = "BID_PLACED"
    OFFER_MADE = "OFFER_MADE"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    OFFER_COUNTERED = "OFFER_COUNTERED"
    OFFER_EXPIRED = "OFFER_EXPIRED"
    SALE_SETTLED = "SALE_SETTLED"
    BID_REFUND_DUE = "BID_REFUND_DUE"
    SETTLEMENT_QUEUED = "SETTLEMENT_QUEUED"
    RECONCILIATION_REQUIRED = "RECONCILIATION_REQUIRED"
