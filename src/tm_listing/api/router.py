"""Listing REST endpoints.

POST  /listings                                            create
GET   /listings                                            search with cursor pagination
GET   /listings/{listing_id}                               detail (counts a view)
PATCH /listings/{listing_id}                               seller edits price/description
POST  /listings/{listing_id}/cancel                        seller cancels
POST  /listings/{listing_id}/purchase                      buy-now at the fixed price
POST  /listings/{listing_id}/bids                          place an auction bid
POST  /listings/{listing_id}/offers                        make an offer
POST  /listings/{listing_id}/offers/{offer_id}/accept      seller accepts
POST  /listings/{listing_id}/offers/{offer_id}/reject      seller rejects
POST  /listings/{listing_id}/offers/{offer_id}/counter     seller counters
POST  /listings/{listing_id}/offers/{offer_id}/accept-counter   offerer accepts the counter
GET   /fees/quote                                          fee breakdown for a price
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.database import get_db_session
from src.tm_common.enums import Currency, ListingKind
from src.tm_common.errors import InvalidAmountError
from src.tm_common.money import percent_to_bps
from src.tm_common.response import ApiResponse, success_response
from src.tm_gateway.auth.dependencies import get_container, get_current_user_id
from src.tm_gateway.container import Container
from src.tm_listing.application.schemas import (
    BidOut,
    CounterOfferRequest,
    CreateListingRequest,
    FeeBreakdownOut,
    ListingDetail,
    MakeOfferRequest,
    OfferOut,
    PlaceBidRequest,
    SettlementOut,
    UpdateListingRequest,
)
from src.tm_listing.domain.repository import ListingFilters
from src.tm_settlement.domain.fee import compute_fees

router = APIRouter(tags=["listings"])

UserId = Annotated[str, Depends(get_current_user_id)]
Db = Annotated[AsyncSession, Depends(get_db_session)]
Services = Annotated[Container, Depends(get_container)]


def _respond(request: Request, data: Any) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/listings", status_code=201)
async def create_listing(
    body: CreateListingRequest,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    listing = await services.listings.create_listing(db, body.to_draft(user_id))
    return _respond(request, ListingDetail.from_domain(listing).model_dump())


@router.get("/listings")
async def list_listings(
    request: Request,
    db: Db,
    services: Services,
    status: str | None = Query(
        None, description="Filter by status. Default: ACTIVE. Use ALL for no filter."
    ),
    kind: ListingKind | None = Query(None),
    currency: Currency | None = Query(None),
    seller_id: str | None = Query(None),
    event_id: str | None = Query(None),
    min_price: int | None = Query(None, ge=0),
    max_price: int | None = Query(None, ge=0),
    q: str | None = Query(None, max_length=100, description="Search descriptions"),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    # status=None → default ACTIVE; status='ALL' → no filter
    filters = ListingFilters(
        status=None if status == "ALL" else (status or "ACTIVE"),
        kind=kind.value if kind else None,
        currency=currency.value if currency else None,
        seller_id=seller_id,
        event_id=event_id,
        min_price=min_price,
        max_price=max_price,
        search=q,
    )
    result = await services.listings.get_listings(db, filters, cursor, limit)
    return _respond(request, result.model_dump())


@router.get("/listings/{listing_id}")
async def get_listing(
    listing_id: str, request: Request, db: Db, services: Services
) -> ApiResponse:
    result = await services.listings.get_listing(db, listing_id)
    return _respond(request, result.model_dump())


@router.patch("/listings/{listing_id}")
async def update_listing(
    listing_id: str,
    body: UpdateListingRequest,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    listing = await services.listings.update_listing(
        db,
        listing_id,
        user_id,
        price=body.price,
        description=body.description,
        auto_accept_threshold=body.auto_accept_threshold,
    )
    return _respond(request, ListingDetail.from_domain(listing).model_dump())


@router.post("/listings/{listing_id}/cancel")
async def cancel_listing(
    listing_id: str, request: Request, user_id: UserId, db: Db, services: Services
) -> ApiResponse:
    listing = await services.listings.cancel_listing(db, listing_id, user_id)
    return _respond(request, ListingDetail.from_domain(listing).model_dump())


@router.post("/listings/{listing_id}/purchase")
async def purchase_listing(
    listing_id: str, request: Request, user_id: UserId, db: Db, services: Services
) -> ApiResponse:
    result = await services.listings.purchase_listing(db, listing_id, user_id)
    return _respond(request, SettlementOut.from_domain(result).model_dump())


@router.post("/listings/{listing_id}/bids", status_code=201)
async def place_bid(
    listing_id: str,
    body: PlaceBidRequest,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    bid = await services.auctions.place_bid(
        db, listing_id, user_id, body.amount, escrow_ref=body.escrow_ref
    )
    return _respond(request, BidOut.from_domain(bid).model_dump())


@router.post("/listings/{listing_id}/offers", status_code=201)
async def make_offer(
    listing_id: str,
    body: MakeOfferRequest,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    outcome = await services.offers.make_offer(
        db, listing_id, user_id, body.amount, body.expires_at, body.message
    )
    return _respond(
        request,
        {
            "offer": OfferOut.from_domain(outcome.offer).model_dump(),
            "settlement": (
                SettlementOut.from_domain(outcome.settlement).model_dump()
                if outcome.settlement
                else None
            ),
        },
    )


@router.post("/listings/{listing_id}/offers/{offer_id}/accept")
async def accept_offer(
    listing_id: str,
    offer_id: str,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    result = await services.offers.accept_offer(db, listing_id, offer_id, actor_id=user_id)
    return _respond(request, SettlementOut.from_domain(result).model_dump())


@router.post("/listings/{listing_id}/offers/{offer_id}/reject")
async def reject_offer(
    listing_id: str,
    offer_id: str,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    offer = await services.offers.reject_offer(db, listing_id, offer_id, actor_id=user_id)
    return _respond(request, OfferOut.from_domain(offer).model_dump())


@router.post("/listings/{listing_id}/offers/{offer_id}/counter")
async def counter_offer(
    listing_id: str,
    offer_id: str,
    body: CounterOfferRequest,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    offer = await services.offers.counter_offer(
        db, listing_id, offer_id, body.counter_amount, actor_id=user_id
    )
    return _respond(request, OfferOut.from_domain(offer).model_dump())


@router.post("/listings/{listing_id}/offers/{offer_id}/accept-counter")
async def accept_counter_offer(
    listing_id: str,
    offer_id: str,
    request: Request,
    user_id: UserId,
    db: Db,
    services: Services,
) -> ApiResponse:
    result = await services.offers.accept_counter_offer(db, listing_id, offer_id, user_id)
    return _respond(request, SettlementOut.from_domain(result).model_dump())


@router.get("/fees/quote")
async def quote_fees(
    request: Request,
    price: int = Query(..., ge=0),
    royalty_percent: str = Query("0", description="e.g. 5 or 2.5"),
    platform_fee_percent: str = Query("2.5"),
) -> ApiResponse:
    try:
        royalty_bps = percent_to_bps(royalty_percent)
        platform_fee_bps = percent_to_bps(platform_fee_percent)
    except ValueError as exc:
        raise InvalidAmountError(str(exc)) from exc
    fees = compute_fees(price, royalty_bps, platform_fee_bps)
    return _respond(request, FeeBreakdownOut.from_domain(fees).model_dump())
