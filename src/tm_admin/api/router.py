# src/tm_admin/api/router.py
"""Operator REST API: run background jobs on demand, inspect the queue."""
from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.tm_common.database import get_db_session
from src.tm_common.enums import ReconciliationStatus
from src.tm_common.response import ApiResponse, success_response
from src.tm_gateway.auth.dependencies import get_container, get_current_user_id
from src.tm_gateway.container import Container
from src.tm_listing.application.schemas import ListingDetail, ReconciliationItemOut

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/sweep")
async def run_sweep(
    operator_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    services: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    report = await services.sweeper.sweep_expired(db)
    return success_response(asdict(report))


@router.post("/reconciliation/run")
async def run_reconciliation(
    operator_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    services: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    report = await services.reconciler.process_due(db)
    return success_response(asdict(report))


@router.get("/reconciliation")
async def list_reconciliation_items(
    operator_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    services: Annotated[Container, Depends(get_container)],
    status: ReconciliationStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
) -> ApiResponse:
    items = await services.reconciler.list_items(db, status, limit)
    return success_response([ReconciliationItemOut.from_domain(i).model_dump() for i in items])


@router.post("/listings/{listing_id}/abandon-sale")
async def abandon_sale(
    listing_id: str,
    operator_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    services: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    listing = await services.coordinator.abandon_pending_sale(db, listing_id)
    return success_response(ListingDetail.from_domain(listing).model_dump())
