from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from budget_tracker.config.logging import logger
from budget_tracker.core.models import Credential
from budget_tracker.infrastructure.database.engine import Database
from budget_tracker.infrastructure.database.repositories import (
    CredentialRepository,
    MonthlyIncomeRepository,
    PositionRepository,
    WithdrawalRepository,
)
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter
from budget_tracker.infrastructure.exchanges.registry import create_adapters
from budget_tracker.services.balance import BalanceAggregator
from budget_tracker.services.ledger import MonthlyIncomeService, PositionService, WithdrawalService
from budget_tracker.services.notifier import ChangeNotifier
from budget_tracker.services.syncer import SchedulerGroup, SyncScheduler


@dataclass
class Container:
    """Everything the API and the CLI share, wired once per process."""
    db: Database
    adapters: Dict[str, BaseExchangeAdapter]
    notifier: ChangeNotifier
    positions: PositionRepository
    credentials: CredentialRepository
    position_service: PositionService
    withdrawal_service: WithdrawalService
    income_service: MonthlyIncomeService
    balance: BalanceAggregator
    schedulers: SchedulerGroup = field(default_factory=SchedulerGroup)

    def seed_credentials(self, pairs: Dict[str, tuple]):
        """Copy credentials from the environment into an empty slot only."""
        existing = {c.exchange for c in self.credentials.get_all() if c.is_configured}
        for exchange, (api_key, api_secret) in pairs.items():
            if exchange in existing:
                continue
            self.credentials.upsert(Credential(exchange=exchange, api_key=api_key, api_secret=api_secret))
            logger.info(f"[{exchange}] API key loaded from environment")

    def close(self):
        for adapter in self.adapters.values():
            adapter.close()
        self.db.dispose()


def build_container(
    settings,
    db: Optional[Database] = None,
    adapters: Optional[Dict[str, BaseExchangeAdapter]] = None,
    sync_exchanges: Optional[Iterable[str]] = None,
) -> Container:
    db = db or Database(settings.DATABASE_URL)
    db.create_all()

    if adapters is None:
        adapters = create_adapters(["bybit", "mexc", "bitget"], settings)

    notifier = ChangeNotifier()
    positions = PositionRepository(db)
    credentials = CredentialRepository(db)

    container = Container(
        db=db,
        adapters=adapters,
        notifier=notifier,
        positions=positions,
        credentials=credentials,
        position_service=PositionService(positions),
        withdrawal_service=WithdrawalService(WithdrawalRepository(db)),
        income_service=MonthlyIncomeService(MonthlyIncomeRepository(db)),
        balance=BalanceAggregator(credentials, adapters, timeout=settings.SYNC_TIMEOUT_SECONDS),
    )

    names = settings.sync_exchanges if sync_exchanges is None else list(sync_exchanges)
    for name in names:
        adapter = adapters.get(name)
        if adapter is None:
            logger.warning(f"[{name}] No adapter available, not scheduling sync")
            continue
        container.schedulers.add(
            SyncScheduler(
                exchange=name,
                adapter=adapter,
                credentials=credentials,
                positions=positions,
                notifier=notifier,
                interval=settings.SYNC_INTERVAL_SECONDS,
                cycle_timeout=settings.SYNC_TIMEOUT_SECONDS,
            )
        )
    return container
