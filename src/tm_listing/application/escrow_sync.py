"""Escrow follow-ups that run after a local change has committed.

Cancel and price updates are local-first: the listing is already CANCELLED,
EXPIRED or repriced when escrow is told. A failed escrow call therefore never
undoes the local change; it is parked on the reconciliation queue instead.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ReconciliationKind
from src.tm_common.errors import EscrowRejectedError, EscrowUnavailableError
from src.tm_common.policy import MarketplaceConfig
from src.tm_common.retry import retry_async
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_settlement.domain.repository import ReconciliationQueueProtocol

logger = logging.getLogger(__name__)

_RETRYABLE = (EscrowUnavailableError, TimeoutError)
_FAILURES = (*_RETRYABLE, EscrowRejectedError)


class EscrowSync:
    def __init__(
        self,
        escrow: EscrowServiceProtocol,
        queue: ReconciliationQueueProtocol,
        config: MarketplaceConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._escrow = escrow
        self._queue = queue
        self._config = config
        self._sleep = sleep

    async def call(self, fn: Callable[[], Awaitable[Any]], label: str) -> Any:
        return await retry_async(
            fn,
            attempts=self._config.escrow_max_attempts,
            retry_on=_RETRYABLE,
            base_delay=self._config.escrow_backoff_base_seconds,
            max_delay=self._config.escrow_backoff_max_seconds,
            timeout=self._config.escrow_timeout_seconds,
            label=label,
            sleep=self._sleep,
        )

    async def cancel_or_queue(
        self,
        db: AsyncSession,
        listing_id: str,
        escrow_ref: str,
        kind: ReconciliationKind = ReconciliationKind.ESCROW_CANCEL,
    ) -> bool:
        """Cancel the escrow listing. Returns False if the cancel was queued instead."""
        try:
            await self.call(
                lambda: self._escrow.cancel_escrow_listing(escrow_ref),
                f"escrow cancel {escrow_ref}",
            )
            return True
        except _FAILURES as exc:
            await self._park(db, kind, listing_id, {"escrow_ref": escrow_ref}, exc)
            return False

    async def update_price_or_queue(
        self, db: AsyncSession, listing_id: str, escrow_ref: str, new_price: int
    ) -> bool:
        try:
            await self.call(
                lambda: self._escrow.update_escrow_listing(escrow_ref, new_price),
                f"escrow update {escrow_ref}",
            )
            return True
        except _FAILURES as exc:
            await self._park(
                db,
                ReconciliationKind.ESCROW_PRICE_SYNC,
                listing_id,
                {"escrow_ref": escrow_ref, "price": new_price},
                exc,
            )
            return False

    async def _park(
        self,
        db: AsyncSession,
        kind: ReconciliationKind,
        listing_id: str,
        payload: dict[str, Any],
        exc: BaseException,
    ) -> None:
        try:
            item = await self._queue.enqueue(
                db, kind, listing_id, {**payload, "error": f"{type(exc).__name__}: {exc}"}
            )
            await db.commit()
        except Exception:
            await db.rollback()
            logger.critical(
                "Could not queue %s for listing %s (%s); operator action needed",
                kind.value, listing_id, payload, exc_info=True,
            )
            raise
        logger.warning(
            "Escrow call for listing %s failed (%s); queued %s as %s",
            listing_id, exc, kind.value, item.id,
        )
