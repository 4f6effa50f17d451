"""AssetRegistry: raw SQL implementation of AssetRegistryProtocol."""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import EventStatus, TicketStatus
from src.tm_common.errors import ConsistencyError
from src.tm_common.id_generator import generate_id
from src.tm_ticket.domain.models import EventInfo, Ticket

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_GET_TICKET_SQL = text("""
    SELECT id, owner_id, event_id, status, listing_id, non_transferable
    FROM tickets
    WHERE id = :asset_id
""")

_GET_EVENT_SQL = text("""
    SELECT id, name, status, starts_at, ends_at,
           royalty_bps, royalty_recipient_id
    FROM events
    WHERE id = :event_id
""")

_MARK_LISTED_SQL = text("""
    UPDATE tickets
    SET status = 'LISTED', listing_id = :listing_id, updated_at = NOW()
    WHERE id = :asset_id
""")

_RELEASE_SQL = text("""
    UPDATE tickets
    SET status = 'ACTIVE', listing_id = NULL, updated_at = NOW()
    WHERE id = :asset_id AND listing_id = :listing_id
""")

_TRANSFER_SQL = text("""
    UPDATE tickets
    SET owner_id = :to_owner_id, status = 'ACTIVE', listing_id = NULL,
        updated_at = NOW()
    WHERE id = :asset_id AND owner_id = :from_owner_id
""")

_INSERT_TRANSFER_SQL = text("""
    INSERT INTO ticket_transfers
        (id, ticket_id, from_owner_id, to_owner_id, listing_id, price, transaction_ref)
    VALUES
        (:id, :ticket_id, :from_owner_id, :to_owner_id, :listing_id, :price, :transaction_ref)
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_ticket(row: Any) -> Ticket:
    return Ticket(
        id=row.id,
        owner_id=row.owner_id,
        event_id=row.event_id,
        status=TicketStatus(row.status),
        listing_id=row.listing_id,
        non_transferable=bool(row.non_transferable),
    )


def _row_to_event(row: Any) -> EventInfo:
    return EventInfo(
        id=row.id,
        name=row.name,
        status=EventStatus(row.status),
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        royalty_bps=row.royalty_bps,
        royalty_recipient_id=row.royalty_recipient_id,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AssetRegistry:
    async def get_ticket(self, db: AsyncSession, asset_id: str) -> Ticket | None:
        result = await db.execute(_GET_TICKET_SQL, {"asset_id": asset_id})
        row = result.fetchone()
        return _row_to_ticket(row) if row else None

    async def get_event(self, db: AsyncSession, event_id: str) -> EventInfo | None:
        result = await db.execute(_GET_EVENT_SQL, {"event_id": event_id})
        row = result.fetchone()
        return _row_to_event(row) if row else None

    async def mark_listed(self, db: AsyncSession, asset_id: str, listing_id: str) -> None:
        await db.execute(_MARK_LISTED_SQL, {"asset_id": asset_id, "listing_id": listing_id})

    async def release(self, db: AsyncSession, asset_id: str, listing_id: str) -> None:
        result = await db.execute(
            _RELEASE_SQL, {"asset_id": asset_id, "listing_id": listing_id}
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.info("Ticket %s no longer listed under %s; release skipped", asset_id, listing_id)

    async def transfer_ownership(
        self,
        db: AsyncSession,
        asset_id: str,
        from_owner_id: str,
        to_owner_id: str,
        listing_id: str,
        price: int,
        transaction_ref: str,
    ) -> None:
        result = await db.execute(
            _TRANSFER_SQL,
            {
                "asset_id": asset_id,
                "from_owner_id": from_owner_id,
                "to_owner_id": to_owner_id,
            },
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise ConsistencyError(
                f"ticket {asset_id} is not owned by {from_owner_id} at settlement"
            )
        await db.execute(
            _INSERT_TRANSFER_SQL,
            {
                "id": generate_id("trf_"),
                "ticket_id": asset_id,
                "from_owner_id": from_owner_id,
                "to_owner_id": to_owner_id,
                "listing_id": listing_id,
                "price": price,
                "transaction_ref": transaction_ref,
            },
        )
