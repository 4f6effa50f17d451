"""Unit tests for AssetRegistry using MagicMock AsyncSession."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.tm_common.enums import EventStatus, TicketStatus
from src.tm_common.errors import ConsistencyError
from src.tm_ticket.infrastructure.persistence import AssetRegistry
from tests.fakes import T0


def _result(one: Any = None, rowcount: int = 1) -> MagicMock:
    result = MagicMock()
    result.fetchone.return_value = one
    result.rowcount = rowcount
    return result


class TestAssetRegistry:
    @pytest.mark.asyncio
    async def test_get_ticket(self) -> None:
        row = MagicMock()
        row.id = "tkt_1"
        row.owner_id = "seller"
        row.event_id = "evt_1"
        row.status = "LISTED"
        row.listing_id = "lst_1"
        row.non_transferable = None
        db = AsyncMock()
        db.execute.return_value = _result(one=row)

        ticket = await AssetRegistry().get_ticket(db, "tkt_1")

        assert ticket is not None
        assert ticket.status == TicketStatus.LISTED
        assert ticket.non_transferable is False

    @pytest.mark.asyncio
    async def test_get_ticket_missing(self) -> None:
        db = AsyncMock()
        db.execute.return_value = _result(one=None)
        assert await AssetRegistry().get_ticket(db, "tkt_x") is None

    @pytest.mark.asyncio
    async def test_get_event(self) -> None:
        row = MagicMock()
        row.id = "evt_1"
        row.name = "Summer Festival"
        row.status = "ACTIVE"
        row.starts_at = T0
        row.ends_at = None
        row.royalty_bps = 500
        row.royalty_recipient_id = "org_1"
        db = AsyncMock()
        db.execute.return_value = _result(one=row)

        event = await AssetRegistry().get_event(db, "evt_1")

        assert event is not None
        assert event.status == EventStatus.ACTIVE
        assert event.royalty_bps == 500

    @pytest.mark.asyncio
    async def test_transfer_records_history(self) -> None:
        db = AsyncMock()
        db.execute.return_value = _result(rowcount=1)
        await AssetRegistry().transfer_ownership(
            db, "tkt_1", "seller", "alice", "lst_1", 5000, "tx_1"
        )
        assert db.execute.await_count == 2
        params = db.execute.await_args_list[1].args[1]
        assert params["ticket_id"] == "tkt_1"
        assert params["transaction_ref"] == "tx_1"
        assert params["id"].startswith("trf_")

    @pytest.mark.asyncio
    async def test_transfer_owner_mismatch(self) -> None:
        db = AsyncMock()
        db.execute.return_value = _result(rowcount=0)
        with pytest.raises(ConsistencyError):
            await AssetRegistry().transfer_ownership(
                db, "tkt_1", "seller", "alice", "lst_1", 5000, "tx_1"
            )
        db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_is_scoped_to_listing(self) -> None:
        db = AsyncMock()
        db.execute.return_value = _result(rowcount=0)
        await AssetRegistry().release(db, "tkt_1", "lst_old")
        params = db.execute.await_args.args[1]
        assert params == {"asset_id": "tkt_1", "listing_id": "lst_old"}
