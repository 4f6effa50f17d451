from src.tm_listing.domain.models import Listing
from src.tm_ticket.domain.models import Ticket


def check_asset_listable(
    asset_id: str, ticket: Ticket | None, active_listing: Listing | None
) -> str | None:
    if ticket is None:
        return f"Ticket {asset_id} does not exist"
    if active_listing is not None:
        return f"Ticket {asset_id} is already listed ({active_listing.id})"
    return None


def check_transferable(ticket: Ticket) -> str | None:
    if ticket.non_transferable:
        return f"Ticket {ticket.id} is non-transferable"
    return None
