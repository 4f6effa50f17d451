"""SettlementCoordinator: reserve, escrow with retry, finalize, and idempotence."""

import asyncio

import pytest

from src.tm_common.enums import (
    ListingEventType,
    ListingStatus,
    PendingSaleStage,
    ReconciliationKind,
    ReconciliationStatus,
    SaleSource,
    SettlementStatus,
)
from src.tm_common.errors import (
    EscrowRejectedError,
    EscrowUnavailableError,
    InvalidRateError,
    ReconciliationRequiredError,
    SaleInProgressError,
    SettlementFailedError,
)
from src.tm_listing.domain.models import Bid
from tests.fakes import T0, Marketplace, auction, fixed_price, make_listing


@pytest.fixture
def seeded(market: Marketplace) -> Marketplace:
    market.seed(make_listing(fixed_price(5000)))
    return market


class TestCompleteSale:
    async def test_fees_and_ownership(self, seeded: Marketplace) -> None:
        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        assert result.status == SettlementStatus.COMPLETED
        assert (result.fees.royalty_fee, result.fees.platform_fee) == (250, 125)
        assert result.fees.seller_proceeds == 4625
        stored = seeded.stored("lst_1")
        assert stored.status == ListingStatus.SOLD
        assert stored.pending_sale is None
        assert stored.settlement is not None
        assert stored.settlement.transaction_ref == result.transaction_ref
        assert seeded.registry.tickets["tkt_1"].owner_id == "buyer"
        (settled,) = seeded.sink.of_type(ListingEventType.SALE_SETTLED)
        assert settled["seller_proceeds"] == 4625
        assert settled["royalty_recipient_id"] == "org_1"

    async def test_second_call_returns_stored_result(self, seeded: Marketplace) -> None:
        first = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        second = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "other", 9999)

        assert second == first
        assert len(seeded.escrow.settled) == 1

    async def test_fee_snapshot_survives_rate_change(self, seeded: Marketplace) -> None:
        seeded.registry.add_event("evt_1", royalty_bps=1000)
        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        assert result.fees.royalty_bps == 500

    async def test_corrupt_rates_halt_before_escrow(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price(5000), royalty_bps=9000, platform_fee_bps=2000))
        with pytest.raises(InvalidRateError):
            await market.coordinator.complete_sale(market.db, "lst_1", "buyer", 5000)
        assert market.escrow.settled == []
        assert market.stored("lst_1").pending_sale is None

    async def test_missing_escrow_ref(self, market: Marketplace) -> None:
        market.seed(make_listing(fixed_price(5000), escrow_ref=None))
        with pytest.raises(SettlementFailedError):
            await market.coordinator.complete_sale(market.db, "lst_1", "buyer", 5000)


class TestEscrowFailures:
    async def test_transient_failures_are_retried(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [EscrowUnavailableError("503"), TimeoutError()]
        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        assert result.is_completed

    async def test_exhaustion_parks_the_sale(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [EscrowUnavailableError("503")] * 3

        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        assert result.status == SettlementStatus.QUEUED
        stored = seeded.stored("lst_1")
        assert stored.status == ListingStatus.ACTIVE
        assert stored.pending_sale is not None
        assert stored.pending_sale.stage == PendingSaleStage.ESCROW_FAILED
        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.id == result.reconciliation_id
        assert item.payload["buyer_id"] == "buyer"

    async def test_rejection_is_not_retried_but_parked(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [EscrowRejectedError("400")]
        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        assert result.status == SettlementStatus.QUEUED
        assert seeded.escrow.settle_errors == []

    async def test_parked_listing_rejects_new_buyers(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [EscrowUnavailableError("503")] * 3
        await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        with pytest.raises(SaleInProgressError):
            await seeded.coordinator.complete_sale(seeded.db, "lst_1", "other", 5000)


class TestFinalizeFailure:
    async def test_local_failure_after_escrow_requires_reconciliation(
        self, seeded: Marketplace
    ) -> None:
        seeded.registry.fail_next_transfer = RuntimeError("db connection lost")

        with pytest.raises(ReconciliationRequiredError) as exc_info:
            await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        assert exc_info.value.transaction_ref.startswith("tx_")
        (item,) = seeded.queue.of_kind(ReconciliationKind.FINALIZE_SALE)
        assert item.payload["transaction_ref"] == exc_info.value.transaction_ref
        assert seeded.sink.of_type(ListingEventType.RECONCILIATION_REQUIRED)
        assert seeded.stored("lst_1").status == ListingStatus.ACTIVE

    async def test_finalize_confirmed_completes_without_escrow(
        self, seeded: Marketplace
    ) -> None:
        seeded.registry.fail_next_transfer = RuntimeError("db connection lost")
        with pytest.raises(ReconciliationRequiredError) as exc_info:
            await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        result = await seeded.coordinator.finalize_confirmed(
            seeded.db, "lst_1", exc_info.value.transaction_ref
        )

        assert result.is_completed
        assert len(seeded.escrow.settled) == 1
        assert seeded.stored("lst_1").status == ListingStatus.SOLD


class TestCancelDuringSettlement:
    async def test_cancel_after_escrow_confirmation_loses(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_gate = asyncio.Event()
        purchase = asyncio.create_task(
            seeded.listings.purchase_listing(seeded.db, "lst_1", "buyer")
        )
        await seeded.escrow.settle_started.wait()

        with pytest.raises(SaleInProgressError):
            await seeded.listings.cancel_listing(seeded.db, "lst_1", "seller")

        seeded.escrow.settle_gate.set()
        result = await purchase
        assert result.is_completed
        stored = seeded.stored("lst_1")
        assert stored.status == ListingStatus.SOLD
        assert seeded.escrow.cancelled == []


class TestInterruptedSettlement:
    async def test_reservation_carries_a_settlement_item(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_gate = asyncio.Event()
        task = asyncio.create_task(
            seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        )
        await seeded.escrow.settle_started.wait()

        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.status == ReconciliationStatus.PENDING
        assert item.next_attempt_at == T0 + seeded.config.settlement_lease

        seeded.escrow.settle_gate.set()
        result = await task
        assert result.is_completed
        assert item.status == ReconciliationStatus.RESOLVED

    async def test_cancelled_settle_is_replayed_after_lease(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_gate = asyncio.Event()
        task = asyncio.create_task(
            seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        )
        await seeded.escrow.settle_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = seeded.stored("lst_1")
        assert stored.pending_sale is not None
        assert stored.pending_sale.stage == PendingSaleStage.ESCROW_SUBMITTED
        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.status == ReconciliationStatus.PENDING

        early = await seeded.reconciler.process_due(seeded.db)
        assert early.claimed == 0

        seeded.escrow.settle_gate = None
        seeded.clock.now = T0 + seeded.config.settlement_lease
        report = await seeded.reconciler.process_due(seeded.db)

        assert (report.claimed, report.resolved) == (1, 1)
        stored = seeded.stored("lst_1")
        assert stored.status == ListingStatus.SOLD
        assert stored.pending_sale is None
        assert seeded.escrow.settled == [("esc_lst_1", "buyer", 5000)]
        assert item.status == ReconciliationStatus.RESOLVED

    async def test_unexpected_escrow_error_parks_the_sale(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [RuntimeError("connection reset by peer")]

        result = await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        assert result.status == SettlementStatus.QUEUED
        stored = seeded.stored("lst_1")
        assert stored.pending_sale is not None
        assert stored.pending_sale.stage == PendingSaleStage.ESCROW_FAILED
        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.id == result.reconciliation_id
        assert len(seeded.sink.of_type(ListingEventType.SETTLEMENT_QUEUED)) == 1


class TestAuctionRefunds:
    async def test_losing_bids_get_refund_events(self, market: Marketplace) -> None:
        terms = auction()
        terms.bids = [
            Bid("b1", "lst_1", "x", 110, 1, T0, is_winning=False, escrow_ref="h1"),
            Bid("b2", "lst_1", "y", 200, 2, T0, escrow_ref="h2"),
        ]
        terms.winning_bid_id = "b2"
        terms.current_bid = 200
        market.seed(make_listing(terms))

        await market.coordinator.complete_sale(
            market.db, "lst_1", "y", 200, source=SaleSource.AUCTION, reference_id="b2"
        )

        refunds = market.sink.of_type(ListingEventType.BID_REFUND_DUE)
        assert [r["bid_id"] for r in refunds] == ["b1"]


class TestAbandon:
    async def test_abandon_parked_sale_reopens(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_errors = [EscrowUnavailableError("503")] * 3
        await seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)

        listing = await seeded.coordinator.abandon_pending_sale(seeded.db, "lst_1")

        assert listing.pending_sale is None
        assert seeded.stored("lst_1").pending_sale is None
        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.status.value == "RESOLVED"

    async def test_cannot_abandon_in_flight_sale(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_gate = asyncio.Event()
        task = asyncio.create_task(
            seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        )
        await seeded.escrow.settle_started.wait()
        with pytest.raises(SaleInProgressError):
            await seeded.coordinator.abandon_pending_sale(seeded.db, "lst_1")
        seeded.escrow.settle_gate.set()
        await task

    async def test_abandon_sale_whose_lease_ran_out(self, seeded: Marketplace) -> None:
        seeded.escrow.settle_gate = asyncio.Event()
        task = asyncio.create_task(
            seeded.coordinator.complete_sale(seeded.db, "lst_1", "buyer", 5000)
        )
        await seeded.escrow.settle_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        seeded.clock.now = T0 + seeded.config.settlement_lease
        listing = await seeded.coordinator.abandon_pending_sale(seeded.db, "lst_1")

        assert listing.pending_sale is None
        assert seeded.stored("lst_1").status == ListingStatus.ACTIVE
        (item,) = seeded.queue.of_kind(ReconciliationKind.SETTLEMENT_RETRY)
        assert item.status == ReconciliationStatus.RESOLVED
        assert seeded.escrow.settled == []
