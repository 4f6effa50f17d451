"""HttpEscrowClient against an httpx.MockTransport."""

import json

import httpx
import pytest

from src.tm_common.errors import EscrowRejectedError, EscrowUnavailableError
from src.tm_escrow.infrastructure.http_client import HttpEscrowClient


def _client(handler) -> HttpEscrowClient:  # type: ignore[no-untyped-def]
    transport = httpx.MockTransport(handler)
    return HttpEscrowClient(
        client=httpx.AsyncClient(transport=transport, base_url="http://escrow.test")
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_create_sends_idempotency_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ref": "esc_77"})

        ref = await _client(handler).create_escrow_listing(
            "tkt_1", 5000, "FIXED_PRICE", "seller", idempotency_key="lst_1"
        )

        assert ref.ref == "esc_77"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/v1/escrow/listings"
        assert seen[0].headers["Idempotency-Key"] == "lst_1"
        assert json.loads(seen[0].content)["price"] == 5000

    @pytest.mark.asyncio
    async def test_verify_ownership(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(200, json={"is_owner": body["owner_id"] == "seller"})

        client = _client(handler)
        assert await client.verify_ownership("tkt_1", "seller") is True
        assert await client.verify_ownership("tkt_1", "mallory") is False

    @pytest.mark.asyncio
    async def test_settle_returns_receipt(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/escrow/listings/esc_1/settle"
            assert request.headers["Idempotency-Key"] == "settle-esc_1"
            return httpx.Response(200, json={"transaction_ref": "0xabc"})

        receipt = await _client(handler).settle_sale("esc_1", "alice", 5000)
        assert receipt.transaction_ref == "0xabc"
        assert receipt.ok

    @pytest.mark.asyncio
    async def test_settle_without_transaction_ref(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(EscrowRejectedError):
            await client.settle_sale("esc_1", "alice", 5000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 410])
    async def test_cancel_already_gone_is_ok(self, status: int) -> None:
        client = _client(lambda request: httpx.Response(status))
        await client.cancel_escrow_listing("esc_1")


class TestFailureClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    async def test_retryable_status(self, status: int) -> None:
        client = _client(lambda request: httpx.Response(status, text="busy"))
        with pytest.raises(EscrowUnavailableError):
            await client.update_escrow_listing("esc_1", 100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 403, 404, 409, 422])
    async def test_rejected_status(self, status: int) -> None:
        client = _client(lambda request: httpx.Response(status, text="no"))
        with pytest.raises(EscrowRejectedError):
            await client.update_escrow_listing("esc_1", 100)

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(EscrowUnavailableError):
            await _client(handler).settle_sale("esc_1", "alice", 5000)

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(EscrowUnavailableError, match="timed out"):
            await _client(handler).cancel_escrow_listing("esc_1")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(EscrowRejectedError):
            await client.verify_ownership("tkt_1", "seller")
