"""ListingStore: exclusive sections, CAS saves and one active listing per ticket."""

import asyncio
import copy

import pytest

from src.tm_common.enums import ListingKind, ListingStatus
from src.tm_common.errors import (
    DuplicateListingError,
    ListingNotFoundError,
    StaleListingError,
)
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.models import ListingDraft
from tests.fakes import Marketplace, fixed_price, make_listing


def _draft() -> ListingDraft:
    return ListingDraft(
        asset_id="tkt_1", seller_id="seller", kind=ListingKind.FIXED_PRICE,
        currency="USDC", price=5000,
    )


@pytest.fixture
def ready(market: Marketplace) -> Marketplace:
    market.registry.add_event("evt_1")
    market.registry.add_ticket("tkt_1", "seller")
    market.escrow.owners["tkt_1"] = "seller"
    return market


class TestMutation:
    async def test_commits_and_bumps_version(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price()))
        async with market.store.mutation(market.db, "lst_1") as listing:
            listing.description = "Row A"
        stored = market.stored("lst_1")
        assert stored.description == "Row A"
        assert stored.version == 1
        assert market.db.commits == 1

    async def test_error_rolls_back(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price()))
        with pytest.raises(RuntimeError):
            async with market.store.mutation(market.db, "lst_1") as listing:
                listing.description = "lost"
                raise RuntimeError("boom")
        assert market.stored("lst_1").description == ""
        assert market.db.rollbacks == 1

    async def test_missing_listing(self, market: Marketplace) -> None:
        with pytest.raises(ListingNotFoundError):
            async with market.store.mutation(market.db, "lst_missing"):
                pass

    async def test_stale_version_rejected(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price()))
        with pytest.raises(StaleListingError):
            async with market.store.mutation(market.db, "lst_1") as listing:
                # Another process saves first.
                other = copy.deepcopy(market.stored("lst_1"))
                await market.repo.save(market.db, other)
                listing.description = "late"
        assert market.stored("lst_1").description == ""

    async def test_section_serializes_writers(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price()))
        order: list[str] = []

        async def writer(name: str) -> None:
            async with market.store.mutation(market.db, "lst_1") as listing:
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                listing.description += name
                order.append(f"{name}-out")

        await asyncio.gather(writer("a"), writer("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert market.stored("lst_1").description == "ab"
        assert market.stored("lst_1").version == 2
        assert not market.store.is_locked("lst_1")


class TestOneActiveListingPerTicket:
    async def test_concurrent_creates_one_wins(self, ready: Marketplace) -> None:
        results = await asyncio.gather(
            *(ready.listings.create_listing(ready.db, _draft()) for _ in range(5)),
            return_exceptions=True,
        )
        created = [r for r in results if not isinstance(r, BaseException)]
        failed = [r for r in results if isinstance(r, BaseException)]

        assert len(created) == 1
        assert all(isinstance(e, DuplicateListingError) for e in failed)
        active = [r for r in ready.repo.rows.values() if r.status == ListingStatus.ACTIVE]
        assert len(active) == 1
        assert len(ready.escrow.created) == 1

    async def test_two_processes_race_on_insert(self, ready: Marketplace) -> None:
        # Two stores sharing one repository: no shared in-process lock.
        other = ListingStore(ready.repo, ready.registry, ready.sink)
        first = make_listing(fixed_price(), listing_id="lst_a")
        second = make_listing(fixed_price(), listing_id="lst_b")

        await ready.store.create(ready.db, first)
        with pytest.raises(DuplicateListingError):
            await other.create(ready.db, second)
        assert set(ready.repo.rows) == {"lst_a"}

    async def test_relist_after_cancel(self, ready: Marketplace) -> None:
        listing = await ready.listings.create_listing(ready.db, _draft())
        await ready.listings.cancel_listing(ready.db, listing.id, "seller")
        again = await ready.listings.create_listing(ready.db, _draft())
        assert again.id != listing.id
