from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from .engine import Base


def utc_now():
    return datetime.now(timezone.utc)


class PositionRow(Base):
    """
    Closed positions from every exchange.
    Natural key: (exchange, order_id); re-syncs overwrite in place.
    """
    __tablename__ = "position"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(128), nullable=False)
    exchange = Column(String(32), nullable=False, index=True)
    symbol = Column(String(64), nullable=False)
    volume = Column(Numeric(36, 12), nullable=False)
    leverage = Column(Integer, nullable=False, default=1)
    closed_pnl = Column(Numeric(36, 12), nullable=False)
    side = Column(String(8), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("exchange", "order_id", name="uq_position_exchange_order"),
        Index("ix_position_date", "date"),
    )


class ApiKeyRow(Base):
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange = Column(String(32), nullable=False, unique=True)
    api_key = Column(String(256), nullable=False, default="")
    api_secret = Column(String(256), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class WithdrawalRow(Base):
    __tablename__ = "withdrawal"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange = Column(String(32), nullable=False, index=True)
    amount = Column(Numeric(36, 12), nullable=False)
    currency = Column(String(16), nullable=False, default="USDT")
    date = Column(DateTime(timezone=True), nullable=False, index=True)


class MonthlyIncomeRow(Base):
    __tablename__ = "monthly_income"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange = Column(String(32), nullable=False, index=True)
    amount = Column(Numeric(36, 12), nullable=False)
    pnl = Column(Numeric(36, 12), nullable=False, default=0)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
