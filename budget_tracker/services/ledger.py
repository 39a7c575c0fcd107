import random
import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from budget_tracker.config.logging import logger
from budget_tracker.core.models import MonthlyIncome, Position, Side, Withdrawal
from budget_tracker.infrastructure.database.repositories import (
    MonthlyIncomeRepository,
    PositionRepository,
    WithdrawalRepository,
)

TEST_POSITION_PREFIX = "test_position_"
TEST_EXCHANGES = ("bybit", "mexc")
TEST_SYMBOLS = ("BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT", "BNBUSDT")


def generate_manual_id(entity_type: str) -> str:
    """manual_<type>_<unix nanos>_<random hex>"""
    return f"manual_{entity_type}_{time.time_ns()}_{secrets.token_hex(4)}"


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    """First and last instant of a calendar month, UTC."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        next_start = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(microseconds=1)


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, Decimal("0"))


class PositionService:
    """Manual position CRUD and PnL totals on top of the Position Store."""

    def __init__(self, repo: PositionRepository, rng: Optional[random.Random] = None):
        self.repo = repo
        self.rng = rng or random.Random()

    def list(self, exchange: Optional[str] = None) -> List[Position]:
        if exchange:
            return self.repo.find_by_exchange(exchange)
        return self.repo.find_all()

    def get(self, position_id: int) -> Position:
        return self.repo.find_by_id(position_id)

    def save(self, position: Position) -> Position:
        if not position.external_id:
            position = Position(
                external_id=generate_manual_id("position"),
                exchange=position.exchange,
                symbol=position.symbol,
                side=position.side,
                volume=position.volume,
                leverage=position.leverage,
                closed_pnl=position.closed_pnl,
                updated_at=position.updated_at,
            )
        saved = self.repo.upsert(position)
        logger.info(f"[{saved.exchange}] Saved position {saved.external_id}")
        return saved

    def delete(self, position_id: int):
        self.repo.delete(position_id)

    def total_pnl(self, exchange: Optional[str] = None) -> Decimal:
        return _sum(p.closed_pnl for p in self.list(exchange))

    def monthly_pnl(self, year: int, month: int, exchange: Optional[str] = None) -> Decimal:
        start, end = month_range(year, month)
        return _sum(
            p.closed_pnl
            for p in self.repo.find_by_date_range(start, end)
            if not exchange or p.exchange == exchange
        )

    def generate_test_positions(self, count: int = 100) -> int:
        """Random positions over the last 180 days, for exercising the UI."""
        now = datetime.now(timezone.utc)
        stamp = time.time_ns()
        positions = [
            Position(
                external_id=f"{TEST_POSITION_PREFIX}{stamp}_{i}",
                exchange=self.rng.choice(TEST_EXCHANGES),
                symbol=self.rng.choice(TEST_SYMBOLS),
                side=self.rng.choice((Side.BUY, Side.SELL)),
                volume=Decimal(self.rng.randint(100, 9999)),
                leverage=self.rng.randint(1, 20),
                closed_pnl=Decimal(self.rng.randint(-500, 999)),
                updated_at=now - timedelta(days=self.rng.randint(0, 179)),
            )
            for i in range(count)
        ]
        written = self.repo.upsert_batch(positions)
        logger.info(f"Generated {written} test positions")
        return written

    def delete_test_positions(self) -> int:
        deleted = self.repo.delete_by_prefix(TEST_POSITION_PREFIX)
        logger.info(f"Deleted {deleted} test positions")
        return deleted


class WithdrawalService:

    def __init__(self, repo: WithdrawalRepository):
        self.repo = repo

    def list(self, exchange: Optional[str] = None) -> List[Withdrawal]:
        if exchange:
            return self.repo.find_by_exchange(exchange)
        return self.repo.find_all()

    def list_between(self, start: datetime, end: datetime) -> List[Withdrawal]:
        return self.repo.find_by_date_range(start, end)

    def save(self, withdrawal: Withdrawal) -> Withdrawal:
        return self.repo.save(withdrawal)

    def delete(self, withdrawal_id: int):
        self.repo.delete(withdrawal_id)

    def total_withdrawals(self, exchange: Optional[str] = None) -> Decimal:
        return _sum(w.amount for w in self.list(exchange))


class MonthlyIncomeService:

    def __init__(self, repo: MonthlyIncomeRepository):
        self.repo = repo

    def list(self, exchange: Optional[str] = None) -> List[MonthlyIncome]:
        if exchange:
            return self.repo.find_by_exchange(exchange)
        return self.repo.find_all()

    def list_between(self, start: datetime, end: datetime) -> List[MonthlyIncome]:
        return self.repo.find_by_date_range(start, end)

    def save(self, income: MonthlyIncome) -> MonthlyIncome:
        return self.repo.save(income)

    def delete(self, income_id: int):
        self.repo.delete(income_id)

    def total_income(self, exchange: Optional[str] = None) -> Decimal:
        return _sum(i.amount for i in self.list(exchange))

    def monthly_income_total(self, year: int, month: int, exchange: Optional[str] = None) -> Decimal:
        start, end = month_range(year, month)
        return _sum(
            i.amount
            for i in self.repo.find_by_date_range(start, end)
            if not exchange or i.exchange == exchange
        )
