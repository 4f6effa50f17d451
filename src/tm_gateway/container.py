"""Service container: wires repositories, engines and background jobs once.

The app builds one Container at startup and keeps it on app.state. Tests
build their own with in-memory collaborators through the keyword overrides.
"""

from dataclasses import dataclass

from config.settings import Settings
from src.tm_auction.engine import AuctionEngine
from src.tm_common.database import session_scope
from src.tm_common.datetime_utils import Clock, utc_now
from src.tm_common.policy import MarketplaceConfig
from src.tm_escrow.domain.gateway import EscrowServiceProtocol
from src.tm_listing.application.escrow_sync import EscrowSync
from src.tm_listing.application.service import ListingService
from src.tm_listing.application.store import ListingStore
from src.tm_listing.domain.repository import ListingRepositoryProtocol
from src.tm_listing.infrastructure.cache import ListingCacheProtocol
from src.tm_listing.infrastructure.persistence import ListingRepository
from src.tm_offer.engine import OfferEngine
from src.tm_risk.validator import ListingValidator
from src.tm_settlement.application.coordinator import SettlementCoordinator
from src.tm_settlement.application.reconciler import ReconciliationWorker
from src.tm_settlement.domain.events import ListingEventSinkProtocol
from src.tm_settlement.domain.repository import ReconciliationQueueProtocol
from src.tm_settlement.infrastructure.outbox import OutboxWriter
from src.tm_settlement.infrastructure.reconciliation import ReconciliationQueue
from src.tm_sweeper.scheduler import PeriodicJob, SessionFactory, SweepScheduler
from src.tm_sweeper.sweeper import ExpirySweeper
from src.tm_ticket.domain.repository import AssetRegistryProtocol
from src.tm_ticket.infrastructure.persistence import AssetRegistry


@dataclass
class Container:
    config: MarketplaceConfig
    store: ListingStore
    escrow: EscrowServiceProtocol
    queue: ReconciliationQueueProtocol
    listings: ListingService
    auctions: AuctionEngine
    offers: OfferEngine
    coordinator: SettlementCoordinator
    sweeper: ExpirySweeper
    reconciler: ReconciliationWorker
    scheduler: SweepScheduler


def build_container(
    s: Settings,
    escrow: EscrowServiceProtocol,
    *,
    cache: ListingCacheProtocol | None = None,
    repo: ListingRepositoryProtocol | None = None,
    registry: AssetRegistryProtocol | None = None,
    events: ListingEventSinkProtocol | None = None,
    queue: ReconciliationQueueProtocol | None = None,
    session_factory: SessionFactory = session_scope,
    clock: Clock = utc_now,
) -> Container:
    config = MarketplaceConfig.from_settings(s)
    store = ListingStore(
        repo or ListingRepository(),
        registry or AssetRegistry(),
        events or OutboxWriter(),
        cache,
    )
    queue = queue or ReconciliationQueue()
    escrow_sync = EscrowSync(escrow, queue, config)
    coordinator = SettlementCoordinator(store, escrow, queue, config, clock=clock)
    validator = ListingValidator(store.registry, store.repo, escrow, config, clock=clock)
    sweeper = ExpirySweeper(store, coordinator, escrow_sync, config, clock=clock)
    reconciler = ReconciliationWorker(queue, coordinator, store, escrow, config, clock=clock)
    scheduler = SweepScheduler(
        [
            PeriodicJob(
                "expiry-sweep",
                sweeper.sweep_expired,
                session_factory,
                interval_seconds=s.SWEEP_INTERVAL_SECONDS,
                initial_delay_seconds=s.SWEEP_INITIAL_DELAY_SECONDS,
            ),
            PeriodicJob(
                "reconciliation",
                reconciler.process_due,
                session_factory,
                interval_seconds=s.RECONCILE_INTERVAL_SECONDS,
                initial_delay_seconds=s.SWEEP_INITIAL_DELAY_SECONDS,
            ),
        ]
    )
    return Container(
        config=config,
        store=store,
        escrow=escrow,
        queue=queue,
        listings=ListingService(
            store, validator, coordinator, escrow, escrow_sync, config, clock=clock
        ),
        auctions=AuctionEngine(store, clock=clock),
        offers=OfferEngine(store, coordinator, clock=clock),
        coordinator=coordinator,
        sweeper=sweeper,
        reconciler=reconciler,
        scheduler=scheduler,
    )
