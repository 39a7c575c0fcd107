from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import AppError
from budget_tracker.core.models import Credential, ExchangeBalance
from budget_tracker.infrastructure.database.repositories import CredentialRepository
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter


class BalanceAggregator:
    """
    Live total equity across every active, configured exchange.
    Nothing is cached; each call asks the exchanges again.
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        adapters: Dict[str, BaseExchangeAdapter],
        timeout: Optional[float] = None,
        max_workers: int = 4,
    ):
        self.credentials = credentials
        self.adapters = adapters
        self.timeout = timeout
        self.max_workers = max_workers

    def _fetch_one(self, credential: Credential) -> Decimal:
        adapter = self.adapters.get(credential.exchange)
        if adapter is None:
            logger.debug(f"[{credential.exchange}] No adapter, balance counted as 0")
            return Decimal("0")

        deadline = Deadline(self.timeout) if self.timeout else None
        try:
            return adapter.fetch_balance(credential.api_key, credential.api_secret, deadline=deadline)
        except AppError as e:
            logger.error(f"[{credential.exchange}] Balance fetch failed, skipping: {e}")
            return Decimal("0")
        except Exception as e:
            logger.error(f"[{credential.exchange}] Unexpected error fetching balance, skipping: {e}")
            return Decimal("0")

    def get_total_balance(self) -> Tuple[Decimal, List[ExchangeBalance]]:
        configured = [c for c in self.credentials.get_all() if c.is_configured]
        if not configured:
            return Decimal("0"), []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(configured))) as pool:
            amounts = list(pool.map(self._fetch_one, configured))

        total = Decimal("0")
        balances: List[ExchangeBalance] = []
        for credential, amount in zip(configured, amounts):
            # zero and unsupported exchanges stay out of the report
            if amount > 0:
                balances.append(ExchangeBalance(exchange=credential.exchange, balance=amount))
                total += amount

        logger.info(f"Total balance: {total:.2f} USDT across {len(balances)} exchanges")
        return total, balances
