"""HttpEscrowClient: JSON-over-HTTP implementation of EscrowServiceProtocol.

One pooled httpx.AsyncClient per process. No retries here; the settlement
coordinator owns backoff and turns exhaustion into a reconciliation item.

Failure classification:
  transport error, timeout, 408/429/5xx  -> EscrowUnavailableError (retryable)
  any other non-2xx                      -> EscrowRejectedError
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.tm_common.errors import EscrowRejectedError, EscrowUnavailableError
from src.tm_escrow.domain.gateway import EscrowListingRef, EscrowReceipt

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})
_MAX_ERROR_CHARS = 500


def _cap_text(s: str, max_chars: int = _MAX_ERROR_CHARS) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


class HttpEscrowClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        key = settings.ESCROW_API_KEY if api_key is None else api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.ESCROW_BASE_URL,
            timeout=httpx.Timeout(timeout_seconds or settings.ESCROW_TIMEOUT_SECONDS),
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        accept_status: frozenset[int] = frozenset(),
    ) -> httpx.Response:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            resp = await self._client.request(method, path, json=json_body, headers=headers)
        except httpx.TimeoutException as exc:
            raise EscrowUnavailableError(f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise EscrowUnavailableError(f"{method} {path}: {exc}") from exc

        if 200 <= resp.status_code < 300 or resp.status_code in accept_status:
            return resp
        body = _cap_text(resp.text)
        if resp.status_code in _RETRYABLE_STATUS:
            raise EscrowUnavailableError(f"{method} {path} -> HTTP {resp.status_code}: {body}")
        raise EscrowRejectedError(f"{method} {path} -> HTTP {resp.status_code}: {body}")

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            parsed = resp.json()
        except ValueError as exc:
            raise EscrowRejectedError(f"non-JSON response: {_cap_text(resp.text)}") from exc
        return parsed if isinstance(parsed, dict) else {"data": parsed}

    async def verify_ownership(self, asset_id: str, owner_id: str) -> bool:
        resp = await self._request(
            "POST", "/v1/ownership/verify", {"asset_id": asset_id, "owner_id": owner_id}
        )
        return bool(self._json(resp).get("is_owner", False))

    async def create_escrow_listing(
        self,
        asset_id: str,
        price: int,
        kind: str,
        seller_id: str,
        idempotency_key: str | None = None,
    ) -> EscrowListingRef:
        resp = await self._request(
            "POST",
            "/v1/escrow/listings",
            {"asset_id": asset_id, "price": price, "kind": kind, "seller_id": seller_id},
            idempotency_key=idempotency_key,
        )
        data = self._json(resp)
        ref = data.get("ref")
        if not ref:
            raise EscrowRejectedError(f"create listing response has no ref: {data}")
        return EscrowListingRef(ref=str(ref), asset_id=asset_id)

    async def update_escrow_listing(self, ref: str, new_price: int) -> None:
        await self._request(
            "PATCH",
            f"/v1/escrow/listings/{ref}",
            {"price": new_price},
            idempotency_key=f"update-{ref}-{new_price}",
        )

    async def cancel_escrow_listing(self, ref: str) -> None:
        # A replayed cancel may find the escrow listing already gone.
        resp = await self._request(
            "DELETE",
            f"/v1/escrow/listings/{ref}",
            idempotency_key=f"cancel-{ref}",
            accept_status=frozenset({404, 410}),
        )
        if resp.status_code in (404, 410):
            logger.info("Escrow listing %s already closed; cancel is a no-op", ref)

    async def settle_sale(self, ref: str, buyer_id: str, final_price: int) -> EscrowReceipt:
        resp = await self._request(
            "POST",
            f"/v1/escrow/listings/{ref}/settle",
            {"buyer_id": buyer_id, "final_price": final_price},
            idempotency_key=f"settle-{ref}",
        )
        data = self._json(resp)
        tx = data.get("transaction_ref")
        if not tx:
            raise EscrowRejectedError(f"settle response has no transaction_ref: {data}")
        return EscrowReceipt(transaction_ref=str(tx), ok=bool(data.get("ok", True)))
