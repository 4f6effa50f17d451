"""Listing validator: ordered, short-circuiting pre-create checks.

Checks run in a fixed order and stop at the first failure. Nothing here
writes; the only exception that escapes is ConsistencyError from the
ownership check.
"""

from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.policy import MarketplaceConfig
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_listing.domain.models import ListingDraft
from src.tm_listing.domain.repository import ListingRepositoryProtocol
from src.tm_risk.rules.asset import check_asset_listable, check_transferable
from src.tm_risk.rules.duration import (
    check_auction_duration,
    check_description,
    check_extension_window,
    check_listing_expiry,
)
from src.tm_risk.rules.event_status import check_event_open
from src.tm_risk.rules.ownership import verify_seller_ownership
from src.tm_risk.rules.pricing import (
    check_auto_accept,
    check_bid_increment,
    check_fee_caps,
    check_price_floor,
    check_reserve,
)
from src.tm_ticket.domain.models import EventInfo, Ticket
from src.tm_ticket.domain.repository import AssetRegistryProtocol


@dataclass
class ValidationResult:
    ok: bool
    reasons: list[str] = field(default_factory=list)
    ticket: Ticket | None = None
    event: EventInfo | None = None

    @classmethod
    def reject(
        cls, reason: str, ticket: Ticket | None = None, event: EventInfo | None = None
    ) -> "ValidationResult":
        return cls(ok=False, reasons=[reason], ticket=ticket, event=event)


class ListingValidator:
    def __init__(
        self,
        registry: AssetRegistryProtocol,
        listings: ListingRepositoryProtocol,
        escrow: EscrowServiceProtocol,
        config: MarketplaceConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._listings = listings
        self._escrow = escrow
        self._config = config
        self._clock = clock

    async def validate_listing_request(
        self, db: AsyncSession, draft: ListingDraft
    ) -> ValidationResult:
        now = self._clock()

        ticket = await self._registry.get_ticket(db, draft.asset_id)
        active = await self._listings.get_active_for_asset(db, draft.asset_id)
        reason = check_asset_listable(draft.asset_id, ticket, active)
        if reason or ticket is None:
            return ValidationResult.reject(reason or "Ticket does not exist")

        reason = await verify_seller_ownership(ticket, draft.seller_id, self._escrow)
        if reason:
            return ValidationResult.reject(reason, ticket)

        reason = check_transferable(ticket)
        if reason:
            return ValidationResult.reject(reason, ticket)

        event = await self._registry.get_event(db, ticket.event_id)
        reason = check_event_open(event, ticket.event_id, now)
        if reason or event is None:
            return ValidationResult.reject(reason or "Event does not exist", ticket, event)

        royalty_bps = event.royalty_bps
        checks: list[Callable[[], str | None]] = [
            lambda: check_price_floor(draft, self._config.min_listing_price),
            lambda: check_auction_duration(draft, now),
            lambda: check_reserve(draft),
            lambda: check_fee_caps(royalty_bps, self._config.platform_fee_bps),
            lambda: check_bid_increment(draft),
            lambda: check_extension_window(draft),
            lambda: check_auto_accept(draft),
            lambda: check_listing_expiry(draft, now),
            lambda: check_description(draft),
        ]
        for check in checks:
            reason = check()
            if reason:
                return ValidationResult.reject(reason, ticket, event)

        return ValidationResult(ok=True, ticket=ticket, event=event)
