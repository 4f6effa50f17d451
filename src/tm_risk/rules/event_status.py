from datetime import datetime

from src.tm_common.enums import EventStatus
from src.tm_ticket.domain.models import EventInfo


def check_event_open(event: EventInfo | None, event_id: str, now: datetime) -> str | None:
    """Tickets for cancelled or finished events cannot be listed."""
    if event is None:
        return f"Event {event_id} does not exist"
    if event.status == EventStatus.CANCELLED:
        return f"Event {event.name} has been cancelled"
    if event.has_concluded(now):
        return f"Event {event.name} has already taken place"
    return None
