"""Settlement and reconciliation domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.tm_common.enums import (
    ReconciliationKind,
    ReconciliationStatus,
    SettlementStatus,
)
from src.tm_settlement.domain.fee import FeeBreakdown


@dataclass(frozen=True)
class SettlementResult:
    listing_id: str
    status: SettlementStatus
    buyer_id: str
    final_price: int
    fees: FeeBreakdown
    transaction_ref: str | None = None
    completed_at: datetime | None = None
    reconciliation_id: str | None = None  # set when status == QUEUED

    @property
    def is_completed(self) -> bool:
        return self.status == SettlementStatus.COMPLETED


@dataclass
class ReconciliationItem:
    id: str
    kind: ReconciliationKind
    listing_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
