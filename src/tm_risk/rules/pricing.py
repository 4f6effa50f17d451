"""Price, fee and offer-threshold rules for a listing draft."""

from src.tm_common.enums import ListingKind
from src.tm_common.money import format_amount
from src.tm_listing.domain.models import ListingDraft
from src.tm_settlement.domain.fee import MAX_PLATFORM_FEE_BPS, MAX_ROYALTY_BPS


def check_price_floor(draft: ListingDraft, min_price: int) -> str | None:
    if draft.kind == ListingKind.OFFER_BASED:
        if draft.minimum_offer is not None and draft.minimum_offer <= 0:
            return "Minimum offer must be greater than zero"
        return None
    if draft.price is None:
        return "Price is required for fixed-price and auction listings"
    if draft.price < min_price:
        return f"Price must be at least {format_amount(min_price, draft.currency)}"
    return None


def check_reserve(draft: ListingDraft) -> str | None:
    if draft.kind != ListingKind.AUCTION or draft.reserve_price is None:
        return None
    if draft.price is not None and draft.reserve_price < draft.price:
        return "Reserve price must be at least the starting price"
    return None


def check_fee_caps(royalty_bps: int, platform_fee_bps: int) -> str | None:
    if not 0 <= royalty_bps <= MAX_ROYALTY_BPS:
        return f"Royalty must be between 0% and {MAX_ROYALTY_BPS / 100:g}%"
    if not 0 <= platform_fee_bps <= MAX_PLATFORM_FEE_BPS:
        return f"Platform fee must be between 0% and {MAX_PLATFORM_FEE_BPS / 100:g}%"
    return None


def check_bid_increment(draft: ListingDraft) -> str | None:
    if draft.kind != ListingKind.AUCTION:
        return None
    if draft.minimum_bid_increment is not None and draft.minimum_bid_increment <= 0:
        return "Minimum bid increment must be greater than zero"
    return None


def check_auto_accept(draft: ListingDraft) -> str | None:
    if draft.auto_accept_threshold is None:
        return None
    if draft.kind == ListingKind.AUCTION:
        return "Auction listings do not accept offers"
    if draft.auto_accept_threshold <= 0:
        return "Auto-accept threshold must be greater than zero"
    return None
