"""Listing event sink Protocol.

Every state change appends one row for the (external) notification and
analytics consumers, inside the same transaction as the change itself.
"""

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ListingEventType


class ListingEventSinkProtocol(Protocol):
    async def append(
        self,
        db: AsyncSession,
        listing_id: str,
        event_type: ListingEventType,
        payload: dict[str, Any],
    ) -> None: ...
