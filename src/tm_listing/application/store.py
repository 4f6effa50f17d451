"""ListingStore: the only component that writes listing, bid and offer state.

Concurrency model:
  - In-process: one asyncio.Lock per listing (the exclusive section), and one
    per asset for creation. Locks are dropped once nobody holds or awaits them.
  - Across processes: every save is a version compare-and-swap; losing the
    race raises StaleListingError and the whole operation is retried by the
    caller from scratch.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.enums import ListingEventType
from src.tm_common.errors import DuplicateListingError, ListingNotFoundError
from src.tm_listing.domain.models import Listing
from src.tm_listing.domain.repository import ListingRepositoryProtocol
from src.tm_listing.infrastructure.cache import ListingCacheProtocol, NullListingCache
from src.tm_settlement.domain.events import ListingEventSinkProtocol
from src.tm_ticket.domain.repository import AssetRegistryProtocol

logger = logging.getLogger(__name__)


class ListingStore:
    def __init__(
        self,
        repo: ListingRepositoryProtocol,
        registry: AssetRegistryProtocol,
        events: ListingEventSinkProtocol,
        cache: ListingCacheProtocol | None = None,
    ) -> None:
        self.repo = repo
        self.registry = registry
        self.events = events
        self.cache: ListingCacheProtocol = cache or NullListingCache()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._holders: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        self._holders[key] += 1
        try:
            async with self._locks[key]:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def section(self, listing_id: str) -> AbstractAsyncContextManager[None]:
        """The listing's exclusive section. Never hold it across an escrow call."""
        return self._locked(f"listing:{listing_id}")

    def asset_section(self, asset_id: str) -> AbstractAsyncContextManager[None]:
        return self._locked(f"asset:{asset_id}")

    def is_locked(self, listing_id: str) -> bool:
        lock = self._locks.get(f"listing:{listing_id}")
        return lock is not None and lock.locked()

    async def load(self, db: AsyncSession, listing_id: str) -> Listing:
        listing = await self.repo.get(db, listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def create(self, db: AsyncSession, listing: Listing) -> Listing:
        """Persist a new ACTIVE listing and mark its ticket listed, atomically."""
        try:
            existing = await self.repo.get_active_for_asset(db, listing.asset_id)
            if existing is not None:
                raise DuplicateListingError(listing.asset_id)
            await self.repo.insert(db, listing)
            await self.registry.mark_listed(db, listing.asset_id, listing.id)
            await self.events.append(
                db,
                listing.id,
                ListingEventType.LISTING_CREATED,
                {
                    "asset_id": listing.asset_id,
                    "seller_id": listing.seller_id,
                    "kind": listing.kind.value,
                    "asking_price": listing.asking_price,
                    "currency": listing.currency,
                },
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        await self.cache.invalidate([listing.id])
        logger.info(
            "Listing %s created for ticket %s (%s)", listing.id, listing.asset_id, listing.kind.value
        )
        return listing

    @asynccontextmanager
    async def mutation(self, db: AsyncSession, listing_id: str) -> AsyncIterator[Listing]:
        """Section + fresh load + CAS save + commit, or rollback on any error.

        The body mutates the yielded listing and appends its events; it must
        not call escrow.
        """
        async with self.section(listing_id):
            try:
                listing = await self.load(db, listing_id)
                yield listing
                await self.repo.save(db, listing)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        await self.cache.invalidate([listing_id])

    async def commit(self, db: AsyncSession, listing_ids: list[str]) -> None:
        await db.commit()
        await self.cache.invalidate(listing_ids)
