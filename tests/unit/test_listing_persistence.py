"""Unit tests for ListingRepository using a mocked AsyncSession."""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.tm_common.enums import ListingKind, ListingStatus, OfferStatus
from src.tm_common.errors import DuplicateListingError, StaleListingError
from src.tm_listing.domain.models import AuctionTerms, Bid, FixedPriceTerms
from src.tm_listing.domain.repository import ListingFilters
from src.tm_listing.infrastructure.persistence import ListingRepository, _listing_params
from tests.fakes import T0, auction, fixed_price, make_listing


def _make_row(**kwargs: Any) -> MagicMock:
    """Create a mock listings row; defaults describe an active fixed-price listing."""
    row = MagicMock()
    defaults: dict[str, Any] = {
        "id": "lst_1", "asset_id": "tkt_1", "seller_id": "seller", "event_id": "evt_1",
        "currency": "USDC", "kind": "FIXED_PRICE", "status": "ACTIVE",
        "price": 5000, "allow_offers": True, "auto_accept_threshold": None,
        "minimum_offer": None, "starting_price": None, "reserve_price": None,
        "minimum_bid_increment": None, "start_time": None, "end_time": None,
        "auto_extend": False, "extension_window_seconds": None,
        "current_bid": None, "winning_bid_id": None,
        "royalty_bps": 500, "royalty_recipient_id": "org_1", "platform_fee_bps": 250,
        "description": None, "escrow_ref": "esc_1", "expires_at": None,
        "pending_sale": None, "settlement": None,
        "view_count": 3, "bid_count": 0, "offer_count": 1, "last_activity_at": T0,
        "version": 7, "closed_at": None, "close_reason": None,
        "created_at": T0, "updated_at": T0, "sweep_retry_at": None,
    }
    defaults.update(kwargs)
    for key, value in defaults.items():
        setattr(row, key, value)
    return row


def _offer_row(**kwargs: Any) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", "ofr_1")
    row.listing_id = kwargs.get("listing_id", "lst_1")
    row.offerer_id = kwargs.get("offerer_id", "alice")
    row.amount = kwargs.get("amount", 4000)
    row.message = kwargs.get("message")
    row.status = kwargs.get("status", "PENDING")
    row.expires_at = kwargs.get("expires_at", T0 + timedelta(days=1))
    row.counter_amount = None
    row.countered_at = None
    row.resolved_at = None
    row.created_at = T0
    return row


def _bid_row(bid_id: str, amount: int, sequence: int, winning: bool) -> MagicMock:
    row = MagicMock()
    row.id = bid_id
    row.listing_id = "lst_1"
    row.bidder_id = f"bidder_{sequence}"
    row.amount = amount
    row.sequence = sequence
    row.is_winning = winning
    row.escrow_ref = None
    row.placed_at = T0
    return row


def _result(one: Any = None, rows: list[Any] | None = None, rowcount: int = 1) -> MagicMock:
    result = MagicMock()
    result.fetchone.return_value = one
    result.fetchall.return_value = rows or []
    result.rowcount = rowcount
    return result


def _session(*results: MagicMock) -> AsyncMock:
    db = AsyncMock()
    db.execute.side_effect = list(results)

    @asynccontextmanager
    async def begin_nested():  # type: ignore[no-untyped-def]
        yield

    db.begin_nested = begin_nested
    return db


class TestReads:
    @pytest.mark.asyncio
    async def test_get_returns_none_when_not_found(self) -> None:
        db = _session(_result(one=None))
        assert await ListingRepository().get(db, "missing") is None

    @pytest.mark.asyncio
    async def test_get_hydrates_offers(self) -> None:
        db = _session(_result(one=_make_row()), _result(rows=[_offer_row()]))
        listing = await ListingRepository().get(db, "lst_1")

        assert listing is not None
        assert isinstance(listing.terms, FixedPriceTerms)
        assert listing.terms.price == 5000
        assert listing.description == ""
        assert listing.version == 7
        assert listing.analytics.view_count == 3
        [offer] = listing.offers
        assert offer.status == OfferStatus.PENDING
        assert offer.message == ""
        assert db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_get_hydrates_auction_bids(self) -> None:
        row = _make_row(
            kind="AUCTION", price=None, allow_offers=False, starting_price=100,
            reserve_price=150, minimum_bid_increment=10, start_time=T0,
            end_time=T0 + timedelta(hours=24), auto_extend=True,
            extension_window_seconds=600, current_bid=110, winning_bid_id="bid_2",
        )
        bids = [_bid_row("bid_1", 100, 1, False), _bid_row("bid_2", 110, 2, True)]
        db = _session(_result(one=row), _result(rows=bids))

        listing = await ListingRepository().get(db, "lst_1")

        assert listing is not None
        assert listing.kind == ListingKind.AUCTION
        terms = listing.terms
        assert isinstance(terms, AuctionTerms)
        assert terms.extension_window == timedelta(minutes=10)
        assert [b.id for b in terms.bids] == ["bid_1", "bid_2"]
        assert terms.winning_bid is not None and terms.winning_bid.amount == 110

    @pytest.mark.asyncio
    async def test_list_due_ids(self) -> None:
        rows = [MagicMock(id="lst_a"), MagicMock(id="lst_b")]
        db = _session(_result(rows=rows))
        ids = await ListingRepository().list_due_ids(db, T0, 10)
        assert ids == ["lst_a", "lst_b"]
        sql = str(db.execute.await_args.args[0])
        assert "ORDER BY due.deadline ASC" in sql
        assert "sweep_retry_at" in sql
        assert db.execute.await_args.args[1] == {"now": T0, "limit": 10}

    @pytest.mark.asyncio
    async def test_list_listings_parses_cursor(self) -> None:
        db = _session(_result(rows=[]))
        await ListingRepository().list_listings(
            db, ListingFilters(), T0.isoformat(), "lst_9", 20
        )
        params = db.execute.await_args.args[1]
        assert params["cursor_ts"] == T0
        assert params["cursor_id"] == "lst_9"
        assert params["limit"] == 20


class TestWrites:
    @pytest.mark.asyncio
    async def test_defer_sweep_writes_only_retry_at(self) -> None:
        db = _session(_result(rowcount=1))
        retry_at = T0 + timedelta(minutes=15)
        await ListingRepository().defer_sweep(db, "lst_1", retry_at)
        sql = str(db.execute.await_args.args[0])
        assert "SET sweep_retry_at = :retry_at" in sql
        assert "version" not in sql
        assert db.execute.await_args.args[1] == {"listing_id": "lst_1", "retry_at": retry_at}

    @pytest.mark.asyncio
    async def test_save_bumps_version(self) -> None:
        listing = make_listing(fixed_price(), version=4)
        db = _session(_result(rowcount=1))
        await ListingRepository().save(db, listing)
        assert listing.version == 5
        db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_stale_version(self) -> None:
        listing = make_listing(fixed_price(), version=4)
        db = _session(_result(rowcount=0))
        with pytest.raises(StaleListingError):
            await ListingRepository().save(db, listing)
        assert listing.version == 4

    @pytest.mark.asyncio
    async def test_save_writes_bid_log(self) -> None:
        terms = auction()
        terms.bids.append(
            Bid(id="bid_1", listing_id="lst_1", bidder_id="alice", amount=110,
                sequence=1, placed_at=T0, is_winning=True)
        )
        listing = make_listing(terms)
        db = _session(_result(rowcount=1), _result())
        await ListingRepository().save(db, listing)
        assert db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_insert_maps_active_asset_conflict(self) -> None:
        db = _session()
        db.execute.side_effect = IntegrityError(
            "INSERT", {}, Exception('duplicate key violates "uq_listings_active_asset"')
        )
        with pytest.raises(DuplicateListingError):
            await ListingRepository().insert(db, make_listing(fixed_price()))

    @pytest.mark.asyncio
    async def test_insert_other_integrity_error_propagates(self) -> None:
        db = _session()
        db.execute.side_effect = IntegrityError("INSERT", {}, Exception("fk_listings_event"))
        with pytest.raises(IntegrityError):
            await ListingRepository().insert(db, make_listing(fixed_price()))


class TestParams:
    def test_auction_flattened(self) -> None:
        params = _listing_params(make_listing(auction(), status=ListingStatus.EXPIRED))
        assert params["kind"] == "AUCTION"
        assert params["status"] == "EXPIRED"
        assert params["price"] is None
        assert params["starting_price"] == 100
        assert params["asking_price"] == 100
        assert params["extension_window_seconds"] == 600

    def test_fixed_price_flattened(self) -> None:
        params = _listing_params(make_listing(fixed_price(5000, allow_offers=False)))
        assert params["price"] == 5000
        assert params["allow_offers"] is False
        assert params["starting_price"] is None
        assert params["pending_sale"] is None
