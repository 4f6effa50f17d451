"""Escrow service Protocol: the only way the engine reaches on-chain custody."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EscrowListingRef:
    ref: str
    asset_id: str


@dataclass(frozen=True)
class EscrowReceipt:
    transaction_ref: str
    ok: bool = True


class EscrowServiceProtocol(Protocol):
    """Implementations raise EscrowUnavailableError for transient failures
    and EscrowRejectedError when retrying cannot help."""

    async def verify_ownership(self, asset_id: str, owner_id: str) -> bool: ...

    async def create_escrow_listing(
        self,
        asset_id: str,
        price: int,
        kind: str,
        seller_id: str,
        idempotency_key: str | None = None,
    ) -> EscrowListingRef: ...

    async def update_escrow_listing(self, ref: str, new_price: int) -> None: ...

    async def cancel_escrow_listing(self, ref: str) -> None: ...

    async def settle_sale(self, ref: str, buyer_id: str, final_price: int) -> EscrowReceipt: ...
