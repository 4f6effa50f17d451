"""MarketplaceConfig: the tunables engines read, built once from settings.

Engines take this object in their constructor instead of importing the
global settings, so tests can pin any value without environment variables.
"""

from dataclasses import dataclass
from datetime import timedelta

from config.settings import Settings

MIN_AUCTION_DURATION = timedelta(hours=1)
MAX_AUCTION_DURATION = timedelta(days=30)
MIN_EXTENSION_WINDOW = timedelta(minutes=1)
MAX_EXTENSION_WINDOW = timedelta(minutes=60)
MAX_DESCRIPTION_LENGTH = 1000
MAX_OFFER_MESSAGE_LENGTH = 500


@dataclass(frozen=True)
class MarketplaceConfig:
    min_listing_price: int = 1
    platform_fee_bps: int = 250
    default_extension_window: timedelta = timedelta(minutes=10)
    escrow_max_attempts: int = 3
    escrow_timeout_seconds: float = 10.0
    escrow_backoff_base_seconds: float = 0.5
    escrow_backoff_max_seconds: float = 8.0
    sweep_batch_size: int = 200
    reconcile_batch_size: int = 50
    reconcile_max_attempts: int = 8
    # A reserved sale older than this with no local outcome is replayed.
    settlement_lease: timedelta = timedelta(minutes=5)
    sweep_failure_backoff: timedelta = timedelta(minutes=15)

    @classmethod
    def from_settings(cls, s: Settings) -> "MarketplaceConfig":
        return cls(
            min_listing_price=s.MIN_LISTING_PRICE,
            platform_fee_bps=s.PLATFORM_FEE_BPS,
            default_extension_window=timedelta(minutes=s.DEFAULT_AUCTION_EXTENSION_MINUTES),
            escrow_max_attempts=s.ESCROW_MAX_ATTEMPTS,
            escrow_timeout_seconds=s.ESCROW_TIMEOUT_SECONDS,
            escrow_backoff_base_seconds=s.ESCROW_BACKOFF_BASE_SECONDS,
            escrow_backoff_max_seconds=s.ESCROW_BACKOFF_MAX_SECONDS,
            sweep_batch_size=s.SWEEP_BATCH_SIZE,
            reconcile_max_attempts=s.RECONCILE_MAX_ATTEMPTS,
            settlement_lease=timedelta(seconds=s.SETTLEMENT_LEASE_SECONDS),
            sweep_failure_backoff=timedelta(seconds=s.SWEEP_FAILURE_BACKOFF_SECONDS),
        )
