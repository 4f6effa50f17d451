"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Validation (bad input, no state change, safe to retry after correction)
  2xxx: Not found
  3xxx: Listing state / concurrency (lost a race, safe to retry from scratch)
  4xxx: Escrow / consistency (operator attention may be required)
  9xxx: System
"""

SUPPORT_MESSAGE = "Something went wrong with this listing; please contact support"


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)

    @property
    def public_message(self) -> str:
        """Message safe to show the caller."""
        return self.message


# --- 1xxx: Validation ---

class ValidationError(AppError):
    def __init__(self, code: int, message: str, http_status: int = 422) -> None:
        super().__init__(code, message, http_status)


class ListingValidationError(ValidationError):
    def __init__(self, reasons: list[str]) -> None:
        self.reasons = list(reasons)
        super().__init__(1001, "; ".join(self.reasons) or "Invalid listing request")


class InvalidRateError(ValidationError):
    def __init__(self, royalty_bps: int, platform_fee_bps: int) -> None:
        self.royalty_bps = royalty_bps
        self.platform_fee_bps = platform_fee_bps
        super().__init__(
            1002,
            f"Invalid fee rates: royalty={royalty_bps}bps platform={platform_fee_bps}bps",
        )


class InvalidAmountError(ValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(1003, f"Invalid amount: {detail}")


class BidTooLowError(ValidationError):
    def __init__(self, minimum: int, display: str | None = None) -> None:
        self.minimum = minimum
        super().__init__(1101, f"Bid too low, minimum is {display or minimum}")


class SelfBidError(ValidationError):
    def __init__(self) -> None:
        super().__init__(1102, "Seller cannot bid on their own listing")


class AuctionEndedError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1103, f"Auction has ended: {listing_id}")


class AuctionNotStartedError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1104, f"Auction has not started yet: {listing_id}")


class BidsNotAllowedError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1105, f"Listing {listing_id} does not accept bids")


class SelfOfferError(ValidationError):
    def __init__(self) -> None:
        super().__init__(1201, "Seller cannot make an offer on their own listing")


class OfferTooLowError(ValidationError):
    def __init__(self, minimum: int, display: str | None = None) -> None:
        self.minimum = minimum
        super().__init__(1202, f"Offer too low, minimum is {display or minimum}")


class DuplicateOfferError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(
            1203, f"You already have a pending offer on listing {listing_id}", 409
        )


class OfferExpiredError(ValidationError):
    def __init__(self, offer_id: str) -> None:
        super().__init__(1204, f"Offer has expired: {offer_id}")


class OfferNotPendingError(ValidationError):
    def __init__(self, offer_id: str, status: str) -> None:
        super().__init__(1205, f"Offer {offer_id} is no longer pending (status={status})")


class OffersNotAllowedError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1206, f"Offers are not allowed on listing {listing_id}")


class InvalidOfferError(ValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(1207, f"Invalid offer: {detail}")


class NotListingOwnerError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1301, f"Only the seller may modify listing {listing_id}", 403)


class InvalidUpdateError(ValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(1302, f"Invalid listing update: {detail}")


class SelfPurchaseError(ValidationError):
    def __init__(self) -> None:
        super().__init__(1303, "Seller cannot buy their own listing")


class PurchaseNotAllowedError(ValidationError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(1304, f"Listing {listing_id} cannot be bought at a fixed price")


class NotOfferOwnerError(ValidationError):
    def __init__(self, offer_id: str) -> None:
        super().__init__(1305, f"Only the offerer may act on offer {offer_id}", 403)


class NoCounterOfferError(ValidationError):
    def __init__(self, offer_id: str) -> None:
        super().__init__(1306, f"Offer {offer_id} has no counter-offer to accept")


# --- 2xxx: Not found ---

class ListingNotFoundError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(2001, f"Listing not found: {listing_id}", 404)


class OfferNotFoundError(AppError):
    def __init__(self, offer_id: str) -> None:
        super().__init__(2002, f"Offer not found: {offer_id}", 404)


class AssetNotFoundError(AppError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(2003, f"Ticket not found: {asset_id}", 404)


# --- 3xxx: State / concurrency ---

class ConcurrencyError(AppError):
    def __init__(self, code: int, message: str, http_status: int = 409) -> None:
        super().__init__(code, message, http_status)


class StaleListingError(ConcurrencyError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(3001, f"Listing {listing_id} was modified concurrently; retry")


class DuplicateListingError(ConcurrencyError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(3002, f"Ticket {asset_id} already has an active listing")


class ListingNotActiveError(AppError):
    def __init__(self, listing_id: str, status: str) -> None:
        self.status = status
        super().__init__(3003, f"Listing {listing_id} is not active (status={status})", 422)


class SaleInProgressError(ConcurrencyError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(3004, f"A sale is already in progress for listing {listing_id}")


# --- 4xxx: Escrow / consistency ---

class ConsistencyError(AppError):
    """Off-chain and on-chain state disagree; never auto-resolved."""

    def __init__(self, detail: str) -> None:
        super().__init__(4001, f"Consistency error: {detail}", 409)

    @property
    def public_message(self) -> str:
        return SUPPORT_MESSAGE


class SettlementFailedError(AppError):
    def __init__(self, listing_id: str, detail: str) -> None:
        self.listing_id = listing_id
        super().__init__(4002, f"Settlement failed for listing {listing_id}: {detail}", 502)


class EscrowUnavailableError(AppError):
    """Transient escrow failure (timeout, transport error, 5xx)."""

    def __init__(self, detail: str) -> None:
        super().__init__(4003, f"Escrow service unavailable: {detail}", 503)


class EscrowRejectedError(AppError):
    """Escrow refused the request; retrying will not help."""

    def __init__(self, detail: str) -> None:
        super().__init__(4004, f"Escrow service rejected request: {detail}", 502)


class ReconciliationRequiredError(AppError):
    """Escrow confirmed the sale but local persistence failed."""

    def __init__(self, listing_id: str, transaction_ref: str, detail: str) -> None:
        self.listing_id = listing_id
        self.transaction_ref = transaction_ref
        super().__init__(
            4005,
            f"Reconciliation required for listing {listing_id} "
            f"(escrow tx {transaction_ref}): {detail}",
            500,
        )

    @property
    def public_message(self) -> str:
        return SUPPORT_MESSAGE


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
