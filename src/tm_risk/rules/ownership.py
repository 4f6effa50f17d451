"""Seller ownership: off-chain record and on-chain escrow must agree.

Agreement on "not the owner" is an ordinary validation failure.
Disagreement between the two sources is a ConsistencyError and is never
resolved here.
"""

import logging

from src.tm_common.errors import ConsistencyError
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_ticket.domain.models import Ticket

logger = logging.getLogger(__name__)


async def verify_seller_ownership(
    ticket: Ticket, seller_id: str, escrow: EscrowServiceProtocol
) -> str | None:
    """Return a rejection reason, or None if the seller owns the ticket in both places."""
    off_chain = ticket.owner_id == seller_id
    on_chain = await escrow.verify_ownership(ticket.id, seller_id)
    if off_chain != on_chain:
        logger.error(
            "Ownership mismatch for ticket %s seller %s: off_chain=%s on_chain=%s",
            ticket.id, seller_id, off_chain, on_chain,
        )
        raise ConsistencyError(
            f"ownership of ticket {ticket.id} disagrees between record and escrow"
        )
    if not off_chain:
        return f"You do not own ticket {ticket.id}"
    return None
