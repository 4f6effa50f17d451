"""ExpirySweeper: force-resolves listings and offers whose deadline passed.

Each due listing is resolved under the same exclusive section interactive
calls use. One listing failing is logged and counted; the sweep carries on
with the rest and leaves that listing out of later batches until
`sweep_failure_backoff` has passed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import ListingEventType, SaleSource
from src.tm_common.policy import MarketplaceConfig
from src.tm_listing.application.escrow_sync import EscrowSync
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import Listing
from src.tm_listing.domain.state_machine import expire, expire_due_offers, refundable_bids
from src.tm_settlement.application.coordinator import SettlementCoordinator

logger = logging.getLogger(__name__)


class _Outcome(str, Enum):
    SKIPPED = "SKIPPED"
    OFFERS_ONLY = "OFFERS_ONLY"
    EXPIRED = "EXPIRED"
    SALE_RESERVED = "SALE_RESERVED"


@dataclass
class SweepReport:
    scanned: int = 0
    expired_listings: int = 0
    sold_listings: int = 0
    expired_offers: int = 0
    queued_settlements: int = 0
    skipped: int = 0
    failures: int = 0
    failed_listing_ids: list[str] = field(default_factory=list)


class ExpirySweeper:
    def __init__(
        self,
        store: ListingStore,
        coordinator: SettlementCoordinator,
        escrow_sync: EscrowSync,
        config: MarketplaceConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._escrow_sync = escrow_sync
        self._config = config
        self._clock = clock

    async def sweep_expired(self, db: AsyncSession) -> SweepReport:
        report = SweepReport()
        now = self._clock()
        due_ids = await self._store.repo.list_due_ids(db, now, self._config.sweep_batch_size)
        report.scanned = len(due_ids)

        for listing_id in due_ids:
            try:
                await self._sweep_one(db, listing_id, report)
            except Exception:
                await db.rollback()
                report.failures += 1
                report.failed_listing_ids.append(listing_id)
                logger.exception("Sweep failed for listing %s", listing_id)
                await self._defer(db, listing_id, now)

        if report.scanned:
            logger.info(
                "Sweep: scanned=%d expired=%d sold=%d queued=%d offers_expired=%d "
                "skipped=%d failures=%d",
                report.scanned, report.expired_listings, report.sold_listings,
                report.queued_settlements, report.expired_offers, report.skipped,
                report.failures,
            )
        return report

    async def _defer(self, db: AsyncSession, listing_id: str, now: datetime) -> None:
        retry_at = now + self._config.sweep_failure_backoff
        try:
            await self._store.repo.defer_sweep(db, listing_id, retry_at)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Could not defer sweep of listing %s", listing_id)

    async def _sweep_one(self, db: AsyncSession, listing_id: str, report: SweepReport) -> None:
        escrow_ref: str | None = None
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            outcome, expired_offers = await self._resolve(db, listing, now)
            escrow_ref = listing.escrow_ref
        report.expired_offers += expired_offers

        if outcome == _Outcome.SKIPPED:
            report.skipped += 1
        elif outcome == _Outcome.EXPIRED:
            report.expired_listings += 1
            if escrow_ref is not None:
                await self._escrow_sync.cancel_or_queue(db, listing_id, escrow_ref)
        elif outcome == _Outcome.SALE_RESERVED:
            result = await self._coordinator.settle_reserved(db, listing_id)
            if result.is_completed:
                report.sold_listings += 1
            else:
                report.queued_settlements += 1

    async def _resolve(
        self, db: AsyncSession, listing: Listing, now: datetime
    ) -> tuple[_Outcome, int]:
        """Apply due transitions to `listing`. Caller holds the section."""
        if not listing.is_active or listing.pending_sale is not None:
            return _Outcome.SKIPPED, 0

        events = self._store.events
        expired_offers = expire_due_offers(listing, now)
        for offer in expired_offers:
            await events.append(
                db,
                listing.id,
                ListingEventType.OFFER_EXPIRED,
                {"offer_id": offer.id, "offerer_id": offer.offerer_id},
            )
        if expired_offers:
            listing.touch(now)

        terms = listing.auction
        if terms is not None:
            if now < terms.end_time:
                return _Outcome.OFFERS_ONLY, len(expired_offers)
            winning = terms.winning_bid
            if winning is not None and terms.reserve_met:
                await self._coordinator.hold_sale(
                    db, listing, winning.bidder_id, winning.amount, SaleSource.AUCTION,
                    reference_id=winning.id,
                )
                logger.info(
                    "Auction %s ended; winner %s at %d", listing.id, winning.bidder_id,
                    winning.amount,
                )
                return _Outcome.SALE_RESERVED, len(expired_offers)
            reason = "reserve_not_met" if winning is not None else "no_bids"
            await self._expire(db, listing, now, f"auction_ended_{reason}")
            return _Outcome.EXPIRED, len(expired_offers)

        if listing.expires_at is not None and now >= listing.expires_at:
            await self._expire(db, listing, now, "listing_expired")
            return _Outcome.EXPIRED, len(expired_offers)
        return _Outcome.OFFERS_ONLY, len(expired_offers)

    async def _expire(self, db: AsyncSession, listing: Listing, now: datetime, reason: str) -> None:
        events = self._store.events
        rejected = expire(listing, now, reason)
        for offer in rejected:
            await events.append(
                db,
                listing.id,
                ListingEventType.OFFER_REJECTED,
                {"offer_id": offer.id, "offerer_id": offer.offerer_id, "reason": reason},
            )
        for bid in refundable_bids(listing):
            await events.append(
                db,
                listing.id,
                ListingEventType.BID_REFUND_DUE,
                {"bid_id": bid.id, "bidder_id": bid.bidder_id, "amount": bid.amount,
                 "escrow_ref": bid.escrow_ref},
            )
        await self._store.registry.release(db, listing.asset_id, listing.id)
        winning = listing.auction.winning_bid if listing.auction else None
        await events.append(
            db,
            listing.id,
            ListingEventType.LISTING_EXPIRED,
            {"reason": reason, "asset_id": listing.asset_id,
             "highest_bid": winning.amount if winning else None},
        )
        logger.info("Listing %s expired (%s)", listing.id, reason)
