"""SettlementCoordinator: the single writer allowed to move a listing to SOLD.

A sale runs in three steps:
  1. Reserve (under the listing's exclusive section): recompute fees from the
     snapshotted rates and set listing.pending_sale. From here on the listing
     rejects bids, offers, edits and cancellation with SaleInProgressError.
  2. Escrow settle_sale, outside the section, with a per-call timeout and
     bounded retries. Exhaustion parks the sale (stage ESCROW_FAILED) on the
     reconciliation queue and returns a QUEUED result.
     The reservation itself writes a SETTLEMENT_RETRY item due once
     config.settlement_lease has passed, so a sale whose caller never comes
     back (cancelled task, crashed worker) is replayed by the reconciliation
     worker. settle_sale carries an idempotency key, which makes the replay
     safe even if the first request reached escrow.
  3. Finalize (section again): check the pending sale is still the one we
     reserved, write the settlement record, mark SOLD, transfer the ticket.
     A failure here, after the asset has moved on-chain, is queued as
     FINALIZE_SALE and surfaces as ReconciliationRequiredError.

complete_sale is idempotent on listing id: a SOLD listing returns its
stored result without calling escrow.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import (
    ListingEventType,
    ListingStatus,
    PendingSaleStage,
    ReconciliationKind,
    SaleSource,
    SettlementStatus,
)
from src.tm_common.errors import (
    EscrowRejectedError,
    EscrowUnavailableError,
    InvalidRateError,
    ReconciliationRequiredError,
    SaleInProgressError,
    SettlementFailedError,
    StaleListingError,
)
from src.tm_common.policy import MarketplaceConfig
from src.tm_common.retry import next_attempt_delay, retry_async
from src.tm_escrow.domain.gateway import EscrowReceipt, EscrowServiceProtocol
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import Bid, Listing, PendingSale, SettlementRecord
from src.tm_listing.domain.state_machine import ensure_open, mark_sold, refundable_bids
from src.tm_settlement.domain.fee import FeeBreakdown, compute_fees
from src.tm_settlement.domain.models import SettlementResult
from src.tm_settlement.domain.repository import ReconciliationQueueProtocol

logger = logging.getLogger(__name__)

_RETRYABLE = (EscrowUnavailableError, TimeoutError)


def stored_result(listing: Listing) -> SettlementResult:
    """Rebuild the result of a finished sale from its settlement record."""
    record = listing.settlement
    if record is None:
        raise SettlementFailedError(listing.id, "listing has no settlement record")
    return SettlementResult(
        listing_id=listing.id,
        status=SettlementStatus.COMPLETED,
        buyer_id=record.buyer_id,
        final_price=record.final_price,
        fees=record.fees,
        transaction_ref=record.transaction_ref,
        completed_at=record.completed_at,
    )


class SettlementCoordinator:
    def __init__(
        self,
        store: ListingStore,
        escrow: EscrowServiceProtocol,
        queue: ReconciliationQueueProtocol,
        config: MarketplaceConfig,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._escrow = escrow
        self._queue = queue
        self._config = config
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Step 1: reserve
    # ------------------------------------------------------------------

    def compute_listing_fees(self, listing: Listing, final_price: int) -> FeeBreakdown:
        try:
            return compute_fees(
                final_price, listing.fees.royalty_bps, listing.fees.platform_fee_bps
            )
        except InvalidRateError:
            logger.critical(
                "Corrupt fee snapshot on listing %s (royalty=%dbps platform=%dbps); "
                "settlement halted",
                listing.id, listing.fees.royalty_bps, listing.fees.platform_fee_bps,
            )
            raise

    def reserve_sale(
        self,
        listing: Listing,
        buyer_id: str,
        final_price: int,
        source: SaleSource,
        reference_id: str | None = None,
    ) -> PendingSale:
        """Mark the listing as sale-in-progress. Caller holds the section and persists."""
        ensure_open(listing)
        self.compute_listing_fees(listing, final_price)
        if listing.escrow_ref is None:
            raise SettlementFailedError(listing.id, "listing has no escrow reference")
        now = self._clock()
        listing.pending_sale = PendingSale(
            buyer_id=buyer_id,
            final_price=final_price,
            source=source,
            started_at=now,
            reference_id=reference_id,
        )
        listing.touch(now)
        return listing.pending_sale

    async def hold_sale(
        self,
        db: AsyncSession,
        listing: Listing,
        buyer_id: str,
        final_price: int,
        source: SaleSource,
        reference_id: str | None = None,
    ) -> PendingSale:
        """reserve_sale plus its SETTLEMENT_RETRY item, in the caller's transaction."""
        pending = self.reserve_sale(listing, buyer_id, final_price, source, reference_id)
        await self._queue.enqueue(
            db,
            ReconciliationKind.SETTLEMENT_RETRY,
            listing.id,
            {
                "buyer_id": buyer_id,
                "final_price": final_price,
                "source": source.value,
                "reference_id": reference_id,
            },
            next_attempt_at=pending.started_at + self._config.settlement_lease,
        )
        return pending

    async def complete_sale(
        self,
        db: AsyncSession,
        listing_id: str,
        buyer_id: str,
        final_price: int,
        *,
        source: SaleSource = SaleSource.DIRECT,
        reference_id: str | None = None,
        precheck: Callable[[Listing], None] | None = None,
    ) -> SettlementResult:
        async with self._store.section(listing_id):
            listing = await self._store.load(db, listing_id)
            if listing.status == ListingStatus.SOLD:
                logger.info("Listing %s already sold; returning stored settlement", listing_id)
                return stored_result(listing)
            try:
                if precheck is not None:
                    precheck(listing)
                await self.hold_sale(db, listing, buyer_id, final_price, source, reference_id)
                await self._store.repo.save(db, listing)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        await self._store.cache.invalidate([listing_id])
        return await self.settle_reserved(db, listing_id)

    # ------------------------------------------------------------------
    # Step 2: escrow
    # ------------------------------------------------------------------

    async def settle_reserved(self, db: AsyncSession, listing_id: str) -> SettlementResult:
        """Run escrow and finalize for a sale already reserved on the listing."""
        listing = await self._store.load(db, listing_id)
        if listing.status == ListingStatus.SOLD:
            return stored_result(listing)
        pending = listing.pending_sale
        if pending is None or listing.escrow_ref is None:
            raise SettlementFailedError(listing_id, "no sale reserved on this listing")
        fees = self.compute_listing_fees(listing, pending.final_price)
        escrow_ref = listing.escrow_ref

        try:
            receipt = await self._settle_with_retry(escrow_ref, pending)
        except _RETRYABLE as exc:
            return await self._park_sale(db, listing_id, pending, fees, str(exc))
        except EscrowRejectedError as exc:
            logger.error("Escrow rejected settlement of listing %s: %s", listing_id, exc)
            return await self._park_sale(db, listing_id, pending, fees, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error settling listing %s", listing_id)
            return await self._park_sale(
                db, listing_id, pending, fees, f"{type(exc).__name__}: {exc}"
            )

        return await self._finalize(db, listing_id, pending, fees, receipt.transaction_ref)

    async def _settle_with_retry(self, escrow_ref: str, pending: PendingSale) -> EscrowReceipt:
        return await retry_async(
            lambda: self._escrow.settle_sale(escrow_ref, pending.buyer_id, pending.final_price),
            attempts=self._config.escrow_max_attempts,
            retry_on=_RETRYABLE,
            base_delay=self._config.escrow_backoff_base_seconds,
            max_delay=self._config.escrow_backoff_max_seconds,
            timeout=self._config.escrow_timeout_seconds,
            label=f"escrow settle {escrow_ref}",
            sleep=self._sleep,
        )

    async def _park_sale(
        self,
        db: AsyncSession,
        listing_id: str,
        pending: PendingSale,
        fees: FeeBreakdown,
        error: str,
    ) -> SettlementResult:
        now = self._clock()
        async with self._store.mutation(db, listing_id) as listing:
            if listing.pending_sale is None or listing.status != ListingStatus.ACTIVE:
                raise StaleListingError(listing_id)
            first_failure = listing.pending_sale.stage != PendingSaleStage.ESCROW_FAILED
            listing.pending_sale.stage = PendingSaleStage.ESCROW_FAILED
            item = await self._queue.find_open(db, listing_id, ReconciliationKind.SETTLEMENT_RETRY)
            if item is None:
                item = await self._queue.enqueue(
                    db,
                    ReconciliationKind.SETTLEMENT_RETRY,
                    listing_id,
                    {
                        "buyer_id": pending.buyer_id,
                        "final_price": pending.final_price,
                        "source": pending.source.value,
                        "reference_id": pending.reference_id,
                        "error": error,
                    },
                    next_attempt_at=now + next_attempt_delay(1),
                )
            if first_failure:
                await self._store.events.append(
                    db,
                    listing_id,
                    ListingEventType.SETTLEMENT_QUEUED,
                    {"buyer_id": pending.buyer_id, "final_price": pending.final_price,
                     "reconciliation_id": item.id},
                )
        logger.warning(
            "Escrow settlement for listing %s failed; queued as %s: %s",
            listing_id, item.id, error,
        )
        return SettlementResult(
            listing_id=listing_id,
            status=SettlementStatus.QUEUED,
            buyer_id=pending.buyer_id,
            final_price=pending.final_price,
            fees=fees,
            reconciliation_id=item.id,
        )

    # ------------------------------------------------------------------
    # Step 3: finalize
    # ------------------------------------------------------------------

    async def finalize_confirmed(
        self, db: AsyncSession, listing_id: str, transaction_ref: str
    ) -> SettlementResult:
        """Finalize a sale escrow already confirmed. Never calls escrow."""
        listing = await self._store.load(db, listing_id)
        if listing.status == ListingStatus.SOLD:
            return stored_result(listing)
        pending = listing.pending_sale
        if pending is None:
            raise SettlementFailedError(listing_id, "no sale reserved on this listing")
        fees = self.compute_listing_fees(listing, pending.final_price)
        return await self._finalize(
            db, listing_id, pending, fees, transaction_ref, enqueue_on_failure=False
        )

    async def _finalize(
        self,
        db: AsyncSession,
        listing_id: str,
        pending: PendingSale,
        fees: FeeBreakdown,
        transaction_ref: str,
        enqueue_on_failure: bool = True,
    ) -> SettlementResult:
        now = self._clock()
        try:
            async with self._store.mutation(db, listing_id) as listing:
                self._check_still_reserved(listing, pending)
                record = SettlementRecord(
                    buyer_id=pending.buyer_id,
                    final_price=pending.final_price,
                    fees=fees,
                    transaction_ref=transaction_ref,
                    completed_at=now,
                    source=pending.source,
                )
                await self._store.registry.transfer_ownership(
                    db,
                    listing.asset_id,
                    listing.seller_id,
                    pending.buyer_id,
                    listing.id,
                    pending.final_price,
                    transaction_ref,
                )
                winning_bid_id = (
                    pending.reference_id if pending.source == SaleSource.AUCTION else None
                )
                refunds = refundable_bids(listing, exclude_bid_id=winning_bid_id)
                mark_sold(listing, record, now)
                await self._emit_settled(db, listing, record, refunds)
                await self._close_settlement_item(db, listing_id)
        except Exception as exc:
            logger.critical(
                "Escrow settled listing %s (tx %s) but local finalize failed: %s",
                listing_id, transaction_ref, exc,
            )
            if enqueue_on_failure:
                await self._record_reconciliation(db, listing_id, pending, transaction_ref, exc)
            raise ReconciliationRequiredError(listing_id, transaction_ref, str(exc)) from exc

        logger.info(
            "Listing %s sold to %s for %d (tx %s)",
            listing_id, pending.buyer_id, pending.final_price, transaction_ref,
        )
        return SettlementResult(
            listing_id=listing_id,
            status=SettlementStatus.COMPLETED,
            buyer_id=pending.buyer_id,
            final_price=pending.final_price,
            fees=fees,
            transaction_ref=transaction_ref,
            completed_at=now,
        )

    @staticmethod
    def _check_still_reserved(listing: Listing, pending: PendingSale) -> None:
        current = listing.pending_sale
        if (
            listing.status != ListingStatus.ACTIVE
            or current is None
            or current.buyer_id != pending.buyer_id
            or current.final_price != pending.final_price
            or current.reference_id != pending.reference_id
        ):
            raise StaleListingError(listing.id)

    async def _emit_settled(
        self, db: AsyncSession, listing: Listing, record: SettlementRecord, refunds: list[Bid]
    ) -> None:
        events = self._store.events
        await events.append(
            db,
            listing.id,
            ListingEventType.SALE_SETTLED,
            {
                "buyer_id": record.buyer_id,
                "seller_id": listing.seller_id,
                "asset_id": listing.asset_id,
                "source": record.source.value,
                "transaction_ref": record.transaction_ref,
                "royalty_recipient_id": listing.fees.royalty_recipient_id,
                **record.fees.to_dict(),
            },
        )
        for bid in refunds:
            await events.append(
                db,
                listing.id,
                ListingEventType.BID_REFUND_DUE,
                {"bid_id": bid.id, "bidder_id": bid.bidder_id, "amount": bid.amount,
                 "escrow_ref": bid.escrow_ref},
            )

    async def _record_reconciliation(
        self,
        db: AsyncSession,
        listing_id: str,
        pending: PendingSale,
        transaction_ref: str,
        exc: BaseException,
    ) -> None:
        try:
            item = await self._queue.enqueue(
                db,
                ReconciliationKind.FINALIZE_SALE,
                listing_id,
                {
                    "transaction_ref": transaction_ref,
                    "buyer_id": pending.buyer_id,
                    "final_price": pending.final_price,
                    "source": pending.source.value,
                    "reference_id": pending.reference_id,
                    "error": f"{type(exc).__name__}: {exc}",
                },
            )
            await self._store.events.append(
                db,
                listing_id,
                ListingEventType.RECONCILIATION_REQUIRED,
                {"transaction_ref": transaction_ref, "reconciliation_id": item.id},
            )
            await self._close_settlement_item(db, listing_id)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.critical(
                "Could not queue reconciliation for listing %s (tx %s); operator action needed",
                listing_id, transaction_ref, exc_info=True,
            )

    async def _close_settlement_item(self, db: AsyncSession, listing_id: str) -> None:
        item = await self._queue.find_open(db, listing_id, ReconciliationKind.SETTLEMENT_RETRY)
        if item is not None:
            await self._queue.mark_resolved(db, item.id)

    # ------------------------------------------------------------------
    # Operator tools
    # ------------------------------------------------------------------

    async def abandon_pending_sale(self, db: AsyncSession, listing_id: str) -> Listing:
        """Drop a parked sale and re-open the listing.

        Accepts a sale escrow failed on, or one still marked as submitted whose
        lease ran out (its caller died mid-settle). An in-flight sale inside
        its lease is refused.
        """
        async with self._store.mutation(db, listing_id) as listing:
            now = self._clock()
            pending = listing.pending_sale
            if pending is None:
                raise SettlementFailedError(listing_id, "no sale reserved on this listing")
            lapsed = pending.started_at + self._config.settlement_lease <= now
            if pending.stage != PendingSaleStage.ESCROW_FAILED and not lapsed:
                raise SaleInProgressError(listing_id)
            stage = pending.stage
            listing.pending_sale = None
            listing.touch(now)
            item = await self._queue.find_open(db, listing_id, ReconciliationKind.SETTLEMENT_RETRY)
            if item is not None:
                await self._queue.mark_resolved(db, item.id)
        logger.warning(
            "Operator abandoned %s sale on listing %s (buyer %s, price %d)",
            stage.value, listing_id, pending.buyer_id, pending.final_price,
        )
        return listing
