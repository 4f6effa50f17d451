"""OfferEngine: make, counter, reject, accept and auto-accept."""

import asyncio
from datetime import timedelta

import pytest

from src.tm_common.enums import (
    ListingEventType,
    ListingStatus,
    OfferStatus,
    SaleSource,
    SettlementStatus,
)
from src.tm_common.errors import (
    DuplicateOfferError,
    InvalidOfferError,
    NoCounterOfferError,
    NotListingOwnerError,
    NotOfferOwnerError,
    OfferExpiredError,
    OfferNotFoundError,
    OfferNotPendingError,
    OffersNotAllowedError,
    OfferTooLowError,
    SaleInProgressError,
    SelfOfferError,
)
from tests.fakes import T0, Marketplace, auction, fixed_price, make_listing, offer_based

TOMORROW = T0 + timedelta(days=1)


@pytest.fixture
def seeded(market: Marketplace) -> Marketplace:
    market.seed(make_listing(offer_based(minimum_offer=1000)))
    return market


class TestMakeOffer:
    async def test_offer_recorded(self, seeded: Marketplace) -> None:
        outcome = await seeded.offers.make_offer(
            seeded.db, "lst_1", "alice", 1500, TOMORROW, "hi"
        )
        assert outcome.settlement is None
        stored = seeded.stored("lst_1")
        assert [o.id for o in stored.pending_offers()] == [outcome.offer.id]
        assert stored.analytics.offer_count == 1
        assert seeded.sink.types() == [ListingEventType.OFFER_MADE]

    async def test_below_minimum(self, seeded: Marketplace) -> None:
        with pytest.raises(OfferTooLowError):
            await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 999, TOMORROW)

    async def test_seller_cannot_offer(self, seeded: Marketplace) -> None:
        with pytest.raises(SelfOfferError):
            await seeded.offers.make_offer(seeded.db, "lst_1", "seller", 1500, TOMORROW)

    async def test_one_pending_offer_per_offerer(self, seeded: Marketplace) -> None:
        await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)
        with pytest.raises(DuplicateOfferError):
            await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1600, TOMORROW)
        await seeded.offers.make_offer(seeded.db, "lst_1", "bob", 1600, TOMORROW)
        assert len(seeded.stored("lst_1").pending_offers()) == 2

    async def test_expiry_must_be_future(self, seeded: Marketplace) -> None:
        with pytest.raises(InvalidOfferError):
            await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, T0)

    async def test_message_length(self, seeded: Marketplace) -> None:
        with pytest.raises(InvalidOfferError):
            await seeded.offers.make_offer(
                seeded.db, "lst_1", "alice", 1500, TOMORROW, "x" * 501
            )

    async def test_offers_disabled(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price(allow_offers=False)))
        with pytest.raises(OffersNotAllowedError):
            await market.offers.make_offer(market.db, "lst_1", "alice", 1500, TOMORROW)

    async def test_no_offers_on_auctions(self, market: Marketplace) -> None:
        market.seed(make_listing(auction()))
        with pytest.raises(OffersNotAllowedError):
            await market.offers.make_offer(market.db, "lst_1", "alice", 1500, TOMORROW)


class TestAutoAccept:
    async def test_offer_at_threshold_settles(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price(5000, auto_accept_threshold=4500)))
        await market.offers.make_offer(market.db, "lst_1", "bob", 4000, TOMORROW)

        outcome = await market.offers.make_offer(market.db, "lst_1", "alice", 4500, TOMORROW)

        assert outcome.settlement is not None
        assert outcome.settlement.status == SettlementStatus.COMPLETED
        assert outcome.settlement.final_price == 4500
        stored = market.stored("lst_1")
        assert stored.status == ListingStatus.SOLD
        assert stored.settlement is not None
        assert stored.settlement.source == SaleSource.OFFER
        statuses = {o.offerer_id: o.status for o in stored.offers}
        assert statuses == {"bob": OfferStatus.REJECTED, "alice": OfferStatus.ACCEPTED}
        assert market.registry.tickets["tkt_1"].owner_id == "alice"

    async def test_offer_below_threshold_waits(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price(5000, auto_accept_threshold=4500)))
        outcome = await market.offers.make_offer(market.db, "lst_1", "alice", 4499, TOMORROW)
        assert outcome.settlement is None
        assert market.stored("lst_1").status == ListingStatus.ACTIVE
        assert market.escrow.settled == []


class TestAccept:
    async def test_seller_accepts(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        await seeded.offers.make_offer(seeded.db, "lst_1", "bob", 1200, TOMORROW)

        result = await seeded.offers.accept_offer(seeded.db, "lst_1", a.id, actor_id="seller")

        assert result.is_completed
        assert result.buyer_id == "alice"
        assert result.fees.royalty_fee + result.fees.platform_fee + result.fees.seller_proceeds == 1500
        rejected = seeded.sink.of_type(ListingEventType.OFFER_REJECTED)
        assert [p["offerer_id"] for p in rejected] == ["bob"]
        assert rejected[0]["reason"] == "another_offer_accepted"

    async def test_only_seller_accepts(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        with pytest.raises(NotListingOwnerError):
            await seeded.offers.accept_offer(seeded.db, "lst_1", a.id, actor_id="alice")

    async def test_unknown_offer(self, seeded: Marketplace) -> None:
        with pytest.raises(OfferNotFoundError):
            await seeded.offers.accept_offer(seeded.db, "lst_1", "ofr_missing")

    async def test_expired_offer_is_resolved_and_reported(self, seeded: Marketplace) -> None:
        a = (
            await seeded.offers.make_offer(
                seeded.db, "lst_1", "alice", 1500, T0 + timedelta(hours=1)
            )
        ).offer
        seeded.clock.advance(hours=1)

        with pytest.raises(OfferExpiredError):
            await seeded.offers.accept_offer(seeded.db, "lst_1", a.id)

        stored = seeded.stored("lst_1")
        assert stored.find_offer(a.id).status == OfferStatus.EXPIRED  # type: ignore[union-attr]
        assert stored.status == ListingStatus.ACTIVE
        assert seeded.escrow.settled == []

    async def test_second_accept_sees_sale_in_progress(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        b = (await seeded.offers.make_offer(seeded.db, "lst_1", "bob", 1200, TOMORROW)).offer
        seeded.escrow.settle_gate = asyncio.Event()

        first = asyncio.create_task(seeded.offers.accept_offer(seeded.db, "lst_1", a.id))
        await seeded.escrow.settle_started.wait()
        with pytest.raises(SaleInProgressError):
            await seeded.offers.accept_offer(seeded.db, "lst_1", b.id)
        seeded.escrow.settle_gate.set()
        result = await first

        assert result.buyer_id == "alice"
        assert len(seeded.escrow.settled) == 1


class TestRejectAndCounter:
    async def test_reject(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        offer = await seeded.offers.reject_offer(seeded.db, "lst_1", a.id, actor_id="seller")
        assert offer.status == OfferStatus.REJECTED
        with pytest.raises(OfferNotPendingError):
            await seeded.offers.reject_offer(seeded.db, "lst_1", a.id)

    async def test_counter_then_accept_counter(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        countered = await seeded.offers.counter_offer(
            seeded.db, "lst_1", a.id, 1800, actor_id="seller"
        )
        assert countered.status == OfferStatus.PENDING
        assert countered.counter_amount == 1800

        with pytest.raises(NotOfferOwnerError):
            await seeded.offers.accept_counter_offer(seeded.db, "lst_1", a.id, "bob")
        result = await seeded.offers.accept_counter_offer(seeded.db, "lst_1", a.id, "alice")

        assert result.final_price == 1800
        assert seeded.stored("lst_1").status == ListingStatus.SOLD

    async def test_accept_counter_without_counter(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        with pytest.raises(NoCounterOfferError):
            await seeded.offers.accept_counter_offer(seeded.db, "lst_1", a.id, "alice")

    async def test_counter_below_minimum(self, seeded: Marketplace) -> None:
        a = (await seeded.offers.make_offer(seeded.db, "lst_1", "alice", 1500, TOMORROW)).offer
        with pytest.raises(OfferTooLowError):
            await seeded.offers.counter_offer(seeded.db, "lst_1", a.id, 500)

    async def test_counter_expired_offer(self, seeded: Marketplace) -> None:
        a = (
            await seeded.offers.make_offer(
                seeded.db, "lst_1", "alice", 1500, T0 + timedelta(minutes=5)
            )
        ).offer
        seeded.clock.advance(minutes=5)
        with pytest.raises(OfferExpiredError):
            await seeded.offers.counter_offer(seeded.db, "lst_1", a.id, 1800)
