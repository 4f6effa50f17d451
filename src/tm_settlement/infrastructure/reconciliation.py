"""ReconciliationQueue: raw SQL implementation of ReconciliationQueueProtocol.

Workers claim rows with FOR UPDATE SKIP LOCKED and push next_attempt_at out
to a lease deadline in the same statement, so two worker processes never
replay the same item concurrently and a crashed worker's items come back
once the lease lapses.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ReconciliationKind, ReconciliationStatus
from src.tm_common.id_generator import new_reconciliation_id
from src.tm_settlement.domain.models import ReconciliationItem

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, kind, listing_id, payload, status, attempts, last_error,
    next_attempt_at, created_at, updated_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO reconciliation_items (id, kind, listing_id, payload, next_attempt_at)
    VALUES (:id, :kind, :listing_id, CAST(:payload AS JSONB),
            COALESCE(CAST(:next_attempt_at AS TIMESTAMPTZ), NOW()))
    RETURNING {_COLUMNS}
""")

_FIND_OPEN_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM reconciliation_items
    WHERE listing_id = :listing_id AND kind = :kind AND status = 'PENDING'
    ORDER BY created_at ASC
    LIMIT 1
""")

_CLAIM_DUE_SQL = text(f"""
    UPDATE reconciliation_items
    SET next_attempt_at = :lease_until, updated_at = NOW()
    WHERE id IN (
        SELECT id
        FROM reconciliation_items
        WHERE status = 'PENDING' AND next_attempt_at <= :now
        ORDER BY next_attempt_at ASC, created_at ASC
        LIMIT :limit
        FOR UPDATE SKIP LOCKED
    )
    RETURNING {_COLUMNS}
""")

_MARK_RESOLVED_SQL = text("""
    UPDATE reconciliation_items
    SET status = 'RESOLVED', last_error = NULL, updated_at = NOW()
    WHERE id = :id
""")

_MARK_FAILED_SQL = text("""
    UPDATE reconciliation_items
    SET attempts = attempts + 1,
        last_error = :error,
        next_attempt_at = :next_attempt_at,
        status = :status,
        updated_at = NOW()
    WHERE id = :id
""")

_LIST_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM reconciliation_items
    WHERE (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_item(row: Any) -> ReconciliationItem:
    payload = row.payload
    if isinstance(payload, str):
        payload = json.loads(payload)
    return ReconciliationItem(
        id=row.id,
        kind=ReconciliationKind(row.kind),
        listing_id=row.listing_id,
        payload=payload or {},
        status=ReconciliationStatus(row.status),
        attempts=row.attempts,
        last_error=row.last_error,
        next_attempt_at=row.next_attempt_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ReconciliationQueue:
    async def enqueue(
        self,
        db: AsyncSession,
        kind: ReconciliationKind,
        listing_id: str,
        payload: dict[str, Any],
        next_attempt_at: datetime | None = None,
    ) -> ReconciliationItem:
        result = await db.execute(
            _INSERT_SQL,
            {
                "id": new_reconciliation_id(),
                "kind": kind.value,
                "listing_id": listing_id,
                "payload": json.dumps(payload, default=str),
                "next_attempt_at": next_attempt_at,
            },
        )
        return _row_to_item(result.fetchone())

    async def find_open(
        self, db: AsyncSession, listing_id: str, kind: ReconciliationKind
    ) -> ReconciliationItem | None:
        result = await db.execute(
            _FIND_OPEN_SQL, {"listing_id": listing_id, "kind": kind.value}
        )
        row = result.fetchone()
        return _row_to_item(row) if row else None

    async def claim_due(
        self, db: AsyncSession, now: datetime, limit: int, lease_until: datetime
    ) -> list[ReconciliationItem]:
        result = await db.execute(
            _CLAIM_DUE_SQL, {"now": now, "limit": limit, "lease_until": lease_until}
        )
        return [_row_to_item(row) for row in result.fetchall()]

    async def mark_resolved(self, db: AsyncSession, item_id: str) -> None:
        await db.execute(_MARK_RESOLVED_SQL, {"id": item_id})

    async def mark_failed(
        self,
        db: AsyncSession,
        item_id: str,
        error: str,
        next_attempt_at: datetime,
        manual: bool,
    ) -> None:
        status = ReconciliationStatus.MANUAL if manual else ReconciliationStatus.PENDING
        await db.execute(
            _MARK_FAILED_SQL,
            {
                "id": item_id,
                "error": error[:2000],
                "next_attempt_at": next_attempt_at,
                "status": status.value,
            },
        )

    async def list_items(
        self, db: AsyncSession, status: str | None, limit: int
    ) -> list[ReconciliationItem]:
        result = await db.execute(_LIST_SQL, {"status": status, "limit": limit})
        return [_row_to_item(row) for row in result.fetchall()]
