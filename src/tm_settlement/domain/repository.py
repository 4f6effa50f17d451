"""Reconciliation queue Protocol: the durable home of partial successes."""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ReconciliationKind
from src.tm_settlement.domain.models import ReconciliationItem


class ReconciliationQueueProtocol(Protocol):
    async def enqueue(
        self,
        db: AsyncSession,
        kind: ReconciliationKind,
        listing_id: str,
        payload: dict[str, Any],
        next_attempt_at: datetime | None = None,
    ) -> ReconciliationItem: ...

    async def find_open(
        self, db: AsyncSession, listing_id: str, kind: ReconciliationKind
    ) -> ReconciliationItem | None: ...

    async def claim_due(
        self, db: AsyncSession, now: datetime, limit: int, lease_until: datetime
    ) -> list[ReconciliationItem]:
        """Lease due PENDING items until `lease_until`; SKIP LOCKED across workers."""
        ...

    async def mark_resolved(self, db: AsyncSession, item_id: str) -> None: ...

    async def mark_failed(
        self,
        db: AsyncSession,
        item_id: str,
        error: str,
        next_attempt_at: datetime,
        manual: bool,
    ) -> None: ...

    async def list_items(
        self, db: AsyncSession, status: str | None, limit: int
    ) -> list[ReconciliationItem]: ...
