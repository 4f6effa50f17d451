"""Repository Protocol: dependency inversion for testability.

Unit tests inject an in-memory store that conforms to this Protocol.
Infrastructure layer provides the raw-SQL implementation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_listing.domain.models import Listing


@dataclass(frozen=True)
class ListingFilters:
    status: str | None = "ACTIVE"  # None means any status
    kind: str | None = None
    currency: str | None = None
    seller_id: str | None = None
    asset_id: str | None = None
    event_id: str | None = None
    min_price: int | None = None
    max_price: int | None = None
    search: str | None = None

    def cache_key(self) -> str:
        parts = [
            self.status, self.kind, self.currency, self.seller_id, self.asset_id,
            self.event_id, self.min_price, self.max_price, self.search,
        ]
        return "|".join("" if p is None else str(p) for p in parts)


class ListingRepositoryProtocol(Protocol):
    async def get(self, db: AsyncSession, listing_id: str) -> Listing | None: ...

    async def get_active_for_asset(
        self, db: AsyncSession, asset_id: str
    ) -> Listing | None: ...

    async def insert(self, db: AsyncSession, listing: Listing) -> None:
        """Insert a new ACTIVE listing; DuplicateListingError if the asset already has one."""
        ...

    async def save(self, db: AsyncSession, listing: Listing) -> None:
        """Compare-and-swap on listing.version; bumps it on success.

        Raises StaleListingError when the stored version moved on.
        """
        ...

    async def list_listings(
        self,
        db: AsyncSession,
        filters: ListingFilters,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Listing]: ...

    async def list_due_ids(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]:
        """ACTIVE listings whose auction end, listing expiry or any pending offer expiry has passed.

        Earliest deadline first. Listings with a pending sale, or whose
        sweep_retry_at is still in the future, are left out.
        """
        ...

    async def defer_sweep(
        self, db: AsyncSession, listing_id: str, retry_at: datetime
    ) -> None:
        """Keep `listing_id` out of list_due_ids until `retry_at`."""
        ...

    async def increment_view_count(self, db: AsyncSession, listing_id: str) -> None: ...
