"""Asset registry Protocol: the off-chain record of who owns which ticket."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_ticket.domain.models import EventInfo, Ticket


class AssetRegistryProtocol(Protocol):
    async def get_ticket(self, db: AsyncSession, asset_id: str) -> Ticket | None: ...

    async def get_event(self, db: AsyncSession, event_id: str) -> EventInfo | None: ...

    async def mark_listed(self, db: AsyncSession, asset_id: str, listing_id: str) -> None: ...

    async def release(self, db: AsyncSession, asset_id: str, listing_id: str) -> None:
        """Clear the listed flag, but only if it still points at `listing_id`."""
        ...

    async def transfer_ownership(
        self,
        db: AsyncSession,
        asset_id: str,
        from_owner_id: str,
        to_owner_id: str,
        listing_id: str,
        price: int,
        transaction_ref: str,
    ) -> None: ...
