"""OutboxWriter: append-only listing_events rows.

Called within the caller's transaction; a rollback drops the event with
the change it describes.
"""

import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ListingEventType
from src.tm_common.id_generator import generate_id

_INSERT_EVENT_SQL = text("""
    INSERT INTO listing_events (id, listing_id, event_type, payload)
    VALUES (:id, :listing_id, :event_type, CAST(:payload AS JSONB))
""")


class OutboxWriter:
    async def append(
        self,
        db: AsyncSession,
        listing_id: str,
        event_type: ListingEventType,
        payload: dict[str, Any],
    ) -> None:
        await db.execute(
            _INSERT_EVENT_SQL,
            {
                "id": generate_id("evt_"),
                "listing_id": listing_id,
                "event_type": event_type.value,
                "payload": json.dumps(payload, default=str),
            },
        )
