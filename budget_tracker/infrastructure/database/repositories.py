"""
Repositories: the only place that knows about rows and SQL.
All methods take and return domain models from budget_tracker.core.models.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from budget_tracker.core.exceptions import ConfigurationError, NotFoundError
from budget_tracker.core.models import Credential, MonthlyIncome, Position, Side, Withdrawal

from .engine import Database
from .models import ApiKeyRow, MonthlyIncomeRow, PositionRow, WithdrawalRow, utc_now

UPSERT_CHUNK = 500


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dialect_insert(dialect: str):
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise ConfigurationError(f"Upsert is not supported on {dialect}")


class PositionRepository:
    """
    Position Store.
    Upserts are keyed by (exchange, order_id); reads are newest first.
    """

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_domain(row: PositionRow) -> Position:
        return Position(
            id=row.id,
            external_id=row.order_id,
            exchange=row.exchange,
            symbol=row.symbol,
            side=Side(row.side),
            volume=Decimal(row.volume),
            leverage=row.leverage,
            closed_pnl=Decimal(row.closed_pnl),
            updated_at=as_utc(row.date),
        )

    @staticmethod
    def _to_values(position: Position, now: datetime) -> Dict:
        return {
            "order_id": position.external_id,
            "exchange": position.exchange,
            "symbol": position.symbol,
            "volume": position.volume,
            "leverage": position.leverage,
            "closed_pnl": position.closed_pnl,
            "side": position.side.value,
            "date": as_utc(position.updated_at),
            "created_at": now,
            "updated_at": now,
        }

    def upsert_batch(self, positions: Sequence[Position]) -> int:
        """
        INSERT ... ON CONFLICT (exchange, order_id) DO UPDATE, one transaction
        for the whole batch. Returns the number of distinct positions written.
        """
        if not positions:
            return 0

        now = utc_now()
        # ON CONFLICT cannot touch the same row twice in one statement
        unique: Dict[Tuple[str, str], Dict] = {}
        for position in positions:
            unique[(position.exchange, position.external_id)] = self._to_values(position, now)
        values = list(unique.values())

        insert = _dialect_insert(self.db.dialect)
        with self.db.session_scope() as session:
            for start in range(0, len(values), UPSERT_CHUNK):
                stmt = insert(PositionRow).values(values[start:start + UPSERT_CHUNK])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["exchange", "order_id"],
                    set_={
                        "symbol": stmt.excluded.symbol,
                        "volume": stmt.excluded.volume,
                        "leverage": stmt.excluded.leverage,
                        "closed_pnl": stmt.excluded.closed_pnl,
                        "side": stmt.excluded.side,
                        "date": stmt.excluded.date,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                session.execute(stmt)
        return len(values)

    def upsert(self, position: Position) -> Position:
        self.upsert_batch([position])
        return self.find_by_external_id(position.exchange, position.external_id)

    def find_all(self) -> List[Position]:
        with self.db.session_scope() as session:
            rows = session.scalars(select(PositionRow).order_by(PositionRow.date.desc(), PositionRow.id.desc()))
            return [self._to_domain(row) for row in rows]

    def find_by_exchange(self, exchange: str) -> List[Position]:
        with self.db.session_scope() as session:
            rows = session.scalars(
                select(PositionRow)
                .where(PositionRow.exchange == exchange)
                .order_by(PositionRow.date.desc(), PositionRow.id.desc())
            )
            return [self._to_domain(row) for row in rows]

    def find_by_date_range(self, start: datetime, end: datetime) -> List[Position]:
        """Inclusive on both ends."""
        with self.db.session_scope() as session:
            rows = session.scalars(
                select(PositionRow)
                .where(PositionRow.date.between(as_utc(start), as_utc(end)))
                .order_by(PositionRow.date.desc(), PositionRow.id.desc())
            )
            return [self._to_domain(row) for row in rows]

    def find_by_id(self, position_id: int) -> Position:
        with self.db.session_scope() as session:
            row = session.get(PositionRow, position_id)
            if row is None:
                raise NotFoundError(f"Position {position_id} not found")
            return self._to_domain(row)

    def find_by_external_id(self, exchange: str, external_id: str) -> Position:
        with self.db.session_scope() as session:
            row = session.scalars(
                select(PositionRow).where(
                    PositionRow.exchange == exchange, PositionRow.order_id == external_id
                )
            ).first()
            if row is None:
                raise NotFoundError(f"Position {exchange}/{external_id} not found")
            return self._to_domain(row)

    def delete(self, position_id: int):
        with self.db.session_scope() as session:
            result = session.execute(delete(PositionRow).where(PositionRow.id == position_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Position {position_id} not found")

    def delete_by_prefix(self, prefix: str) -> int:
        with self.db.session_scope() as session:
            result = session.execute(delete(PositionRow).where(PositionRow.order_id.startswith(prefix, autoescape=True)))
            return result.rowcount


class CredentialRepository:
    """Credential Store: one row per exchange, upserted by exchange name."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_domain(row: ApiKeyRow) -> Credential:
        return Credential(
            id=row.id,
            exchange=row.exchange,
            api_key=row.api_key or "",
            api_secret=row.api_secret or "",
            is_active=row.is_active,
            created_at=as_utc(row.created_at) if row.created_at else None,
            updated_at=as_utc(row.updated_at) if row.updated_at else None,
        )

    def get_by_exchange(self, exchange: str) -> Credential:
        with self.db.session_scope() as session:
            row = session.scalars(select(ApiKeyRow).where(ApiKeyRow.exchange == exchange)).first()
            if row is None:
                raise NotFoundError(f"No API key for {exchange}")
            return self._to_domain(row)

    def get_all(self) -> List[Credential]:
        with self.db.session_scope() as session:
            rows = session.scalars(select(ApiKeyRow).order_by(ApiKeyRow.exchange))
            return [self._to_domain(row) for row in rows]

    def upsert(self, credential: Credential) -> Credential:
        """Saving a key always re-activates the exchange; empty keys are allowed."""
        now = utc_now()
        insert = _dialect_insert(self.db.dialect)
        stmt = insert(ApiKeyRow).values(
            exchange=credential.exchange,
            api_key=credential.api_key or "",
            api_secret=credential.api_secret or "",
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["exchange"],
            set_={
                "api_key": stmt.excluded.api_key,
                "api_secret": stmt.excluded.api_secret,
                "is_active": True,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.db.session_scope() as session:
            session.execute(stmt)
        return self.get_by_exchange(credential.exchange)


class WithdrawalRepository:

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_domain(row: WithdrawalRow) -> Withdrawal:
        return Withdrawal(
            id=row.id,
            exchange=row.exchange,
            amount=Decimal(row.amount),
            currency=row.currency,
            created_at=as_utc(row.date),
        )

    def save(self, withdrawal: Withdrawal) -> Withdrawal:
        with self.db.session_scope() as session:
            row = WithdrawalRow(
                exchange=withdrawal.exchange,
                amount=withdrawal.amount,
                currency=withdrawal.currency,
                date=as_utc(withdrawal.created_at),
            )
            session.add(row)
            session.flush()
            return self._to_domain(row)

    def _find(self, *criteria) -> List[Withdrawal]:
        with self.db.session_scope() as session:
            rows = session.scalars(
                select(WithdrawalRow).where(*criteria).order_by(WithdrawalRow.date.desc(), WithdrawalRow.id.desc())
            )
            return [self._to_domain(row) for row in rows]

    def find_all(self) -> List[Withdrawal]:
        return self._find()

    def find_by_exchange(self, exchange: str) -> List[Withdrawal]:
        return self._find(WithdrawalRow.exchange == exchange)

    def find_by_date_range(self, start: datetime, end: datetime) -> List[Withdrawal]:
        return self._find(WithdrawalRow.date.between(as_utc(start), as_utc(end)))

    def delete(self, withdrawal_id: int):
        with self.db.session_scope() as session:
            result = session.execute(delete(WithdrawalRow).where(WithdrawalRow.id == withdrawal_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Withdrawal {withdrawal_id} not found")


class MonthlyIncomeRepository:

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_domain(row: MonthlyIncomeRow) -> MonthlyIncome:
        return MonthlyIncome(
            id=row.id,
            exchange=row.exchange,
            amount=Decimal(row.amount),
            pnl=Decimal(row.pnl),
            created_at=as_utc(row.date),
        )

    def save(self, income: MonthlyIncome) -> MonthlyIncome:
        with self.db.session_scope() as session:
            row = MonthlyIncomeRow(
                exchange=income.exchange,
                amount=income.amount,
                pnl=income.pnl,
                date=as_utc(income.created_at),
            )
            session.add(row)
            session.flush()
            return self._to_domain(row)

    def _find(self, *criteria) -> List[MonthlyIncome]:
        with self.db.session_scope() as session:
            rows = session.scalars(
                select(MonthlyIncomeRow)
                .where(*criteria)
                .order_by(MonthlyIncomeRow.date.desc(), MonthlyIncomeRow.id.desc())
            )
            return [self._to_domain(row) for row in rows]

    def find_all(self) -> List[MonthlyIncome]:
        return self._find()

    def find_by_exchange(self, exchange: str) -> List[MonthlyIncome]:
        return self._find(MonthlyIncomeRow.exchange == exchange)

    def find_by_date_range(self, start: datetime, end: datetime) -> List[MonthlyIncome]:
        return self._find(MonthlyIncomeRow.date.between(as_utc(start), as_utc(end)))

    def delete(self, income_id: int):
        with self.db.session_scope() as session:
            result = session.execute(delete(MonthlyIncomeRow).where(MonthlyIncomeRow.id == income_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Monthly income {income_id} not found")
