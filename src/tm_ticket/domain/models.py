"""Ticket and event views from the system of record."""

from dataclasses import dataclass
from datetime import datetime

from src.tm_common.enums import EventStatus, TicketStatus


@dataclass
class Ticket:
    id: str
    owner_id: str
    event_id: str
    status: TicketStatus = TicketStatus.ACTIVE
    listing_id: str | None = None
    non_transferable: bool = False

    @property
    def is_listed(self) -> bool:
        return self.status == TicketStatus.LISTED


@dataclass
class EventInfo:
    id: str
    name: str
    status: EventStatus
    starts_at: datetime
    ends_at: datetime | None = None
    royalty_bps: int = 0
    royalty_recipient_id: str | None = None

    def has_concluded(self, now: datetime) -> bool:
        if self.status == EventStatus.CONCLUDED:
            return True
        return (self.ends_at or self.starts_at) <= now
