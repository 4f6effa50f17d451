"""Auction window and listing text limits."""

from datetime import datetime

from src.tm_common.enums import ListingKind
from src.tm_common.policy import (
    MAX_AUCTION_DURATION,
    MAX_DESCRIPTION_LENGTH,
    MAX_EXTENSION_WINDOW,
    MIN_AUCTION_DURATION,
    MIN_EXTENSION_WINDOW,
)
from src.tm_listing.domain.models import ListingDraft


def check_auction_duration(draft: ListingDraft, now: datetime) -> str | None:
    if draft.kind != ListingKind.AUCTION:
        return None
    if draft.end_time is None:
        return "Auction end time is required"
    start = draft.start_time or now
    if draft.end_time <= now:
        return "Auction end time must be in the future"
    duration = draft.end_time - start
    if not MIN_AUCTION_DURATION <= duration <= MAX_AUCTION_DURATION:
        return "Auction duration must be between 1 hour and 30 days"
    return None


def check_extension_window(draft: ListingDraft) -> str | None:
    if draft.kind != ListingKind.AUCTION or draft.extension_window is None:
        return None
    if not MIN_EXTENSION_WINDOW <= draft.extension_window <= MAX_EXTENSION_WINDOW:
        return "Auction extension window must be between 1 and 60 minutes"
    return None


def check_listing_expiry(draft: ListingDraft, now: datetime) -> str | None:
    if draft.expires_at is None:
        return None
    if draft.kind == ListingKind.AUCTION:
        return "Auction listings end at their end time; expires_at is not allowed"
    if draft.expires_at <= now:
        return "Listing expiry must be in the future"
    return None


def check_description(draft: ListingDraft) -> str | None:
    if len(draft.description) > MAX_DESCRIPTION_LENGTH:
        return f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
    return None
