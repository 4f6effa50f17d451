"""Reconciliation worker: replays queued partial successes.

Each item is replayed according to its kind:
  SETTLEMENT_RETRY       escrow settle + finalize (coordinator.settle_reserved)
  FINALIZE_SALE          finalize with the stored transaction ref, no escrow call
  ESCROW_CANCEL          cancel_escrow_listing
  ORPHAN_ESCROW_LISTING  cancel_escrow_listing
  ESCROW_PRICE_SYNC      update_escrow_listing with the listing's current price

Success marks the item RESOLVED. Failure bumps attempts with backoff; after
max attempts the item goes MANUAL and waits for an operator.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.enums import ReconciliationKind, ReconciliationStatus
from src.tm_common.errors import AppError
from src.tm_common.policy import MarketplaceConfig
from src.tm_common.retry import next_attempt_delay
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_listing.application.store import ListingStore
from src.tm_settlement.application.coordinator import SettlementCoordinator
from src.tm_settlement.domain.models import ReconciliationItem
from src.tm_settlement.domain.repository import ReconciliationQueueProtocol

logger = logging.getLogger(__name__)

CLAIM_LEASE = timedelta(minutes=5)


class ReplayIncompleteError(Exception):
    """The replay ran but the work is not done yet (e.g. escrow still failing)."""


@dataclass
class ReconciliationReport:
    claimed: int = 0
    resolved: int = 0
    retried: int = 0
    manual: int = 0
    errors: list[str] = field(default_factory=list)


class ReconciliationWorker:
    def __init__(
        self,
        queue: ReconciliationQueueProtocol,
        coordinator: SettlementCoordinator,
        store: ListingStore,
        escrow: EscrowServiceProtocol,
        config: MarketplaceConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._queue = queue
        self._coordinator = coordinator
        self._store = store
        self._escrow = escrow
        self._config = config
        self._clock = clock

    async def process_due(self, db: AsyncSession) -> ReconciliationReport:
        report = ReconciliationReport()
        now = self._clock()
        try:
            items = await self._queue.claim_due(
                db, now, self._config.reconcile_batch_size, now + CLAIM_LEASE
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        report.claimed = len(items)

        for item in items:
            try:
                await self._replay(db, item)
            except Exception as exc:
                await self._record_failure(db, item, exc, report)
                continue
            try:
                await self._queue.mark_resolved(db, item.id)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception("Could not mark reconciliation item %s resolved", item.id)
                report.errors.append(f"{item.id}: mark_resolved failed")
                continue
            report.resolved += 1
            logger.info(
                "Reconciliation item %s (%s) for listing %s resolved",
                item.id, item.kind.value, item.listing_id,
            )

        if report.claimed:
            logger.info(
                "Reconciliation run: claimed=%d resolved=%d retried=%d manual=%d",
                report.claimed, report.resolved, report.retried, report.manual,
            )
        return report

    async def _replay(self, db: AsyncSession, item: ReconciliationItem) -> None:
        if item.kind == ReconciliationKind.SETTLEMENT_RETRY:
            result = await self._coordinator.settle_reserved(db, item.listing_id)
            if not result.is_completed:
                raise ReplayIncompleteError("escrow settlement still failing")
        elif item.kind == ReconciliationKind.FINALIZE_SALE:
            await self._coordinator.finalize_confirmed(
                db, item.listing_id, item.payload["transaction_ref"]
            )
        elif item.kind in (
            ReconciliationKind.ESCROW_CANCEL,
            ReconciliationKind.ORPHAN_ESCROW_LISTING,
        ):
            await self._escrow.cancel_escrow_listing(item.payload["escrow_ref"])
        elif item.kind == ReconciliationKind.ESCROW_PRICE_SYNC:
            listing = await self._store.load(db, item.listing_id)
            if not listing.is_active or listing.escrow_ref is None:
                logger.info(
                    "Listing %s no longer active; dropping price sync %s",
                    item.listing_id, item.id,
                )
                return
            price = listing.asking_price
            if price is not None:
                await self._escrow.update_escrow_listing(listing.escrow_ref, price)
        else:
            raise ValueError(f"Unknown reconciliation kind: {item.kind}")

    async def _record_failure(
        self,
        db: AsyncSession,
        item: ReconciliationItem,
        exc: Exception,
        report: ReconciliationReport,
    ) -> None:
        await db.rollback()
        attempts = item.attempts + 1
        manual = attempts >= self._config.reconcile_max_attempts
        error = f"{type(exc).__name__}: {exc}"
        try:
            await self._queue.mark_failed(
                db,
                item.id,
                error,
                self._clock() + next_attempt_delay(attempts),
                manual=manual,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Could not record failure of reconciliation item %s", item.id)
        report.errors.append(f"{item.id}: {error}")
        if manual:
            report.manual += 1
            logger.critical(
                "Reconciliation item %s (%s) for listing %s needs an operator after %d attempts: %s",
                item.id, item.kind.value, item.listing_id, attempts, error,
            )
        else:
            report.retried += 1
            expected = isinstance(exc, (AppError, ReplayIncompleteError))
            level = logging.WARNING if expected else logging.ERROR
            logger.log(
                level,
                "Reconciliation item %s (%s) attempt %d failed: %s",
                item.id, item.kind.value, attempts, error,
            )

    async def list_items(
        self, db: AsyncSession, status: ReconciliationStatus | None, limit: int = 100
    ) -> list[ReconciliationItem]:
        return await self._queue.list_items(db, status.value if status else None, limit)
