"""ORM models stay in step with the columns the raw-SQL repository writes."""

from src.tm_listing.infrastructure.db_models import ListingBidORM, ListingOfferORM, ListingORM
from src.tm_listing.infrastructure.persistence import (
    _LISTING_COLUMNS,
    _bid_params,
    _listing_params,
    _offer_params,
)
from src.tm_listing.domain.models import Bid, Offer
from tests.fakes import T0, fixed_price, make_listing


def _columns(model: type) -> set[str]:
    return {c.name for c in model.__table__.columns}  # type: ignore[attr-defined]


class TestListingColumns:
    def test_selected_columns_exist(self) -> None:
        selected = {c.strip() for c in _LISTING_COLUMNS.split(",")}
        assert selected <= _columns(ListingORM)

    def test_written_columns_match_model(self) -> None:
        assert set(_listing_params(make_listing(fixed_price()))) == _columns(ListingORM)

    def test_bid_columns(self) -> None:
        bid = Bid(id="bid_1", listing_id="lst_1", bidder_id="alice", amount=110,
                  sequence=1, placed_at=T0)
        assert set(_bid_params(bid)) == _columns(ListingBidORM)

    def test_offer_columns(self) -> None:
        offer = Offer(id="ofr_1", listing_id="lst_1", offerer_id="alice", amount=1500,
                      expires_at=T0, created_at=T0)
        assert set(_offer_params(offer)) == _columns(ListingOfferORM)
