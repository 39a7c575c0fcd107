"""
Pydantic request/response schemas for the HTTP API.
Field names on the wire are camelCase; Python attributes stay snake_case.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from budget_tracker.core.models import (
    Credential,
    ExchangeBalance,
    MonthlyIncome,
    Position,
    Side,
    Withdrawal,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =======================
# REQUESTS
# =======================

class PositionIn(ApiModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    exchange: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    side: Side
    volume: Decimal = Field(ge=0)
    leverage: int = 1
    closed_pnl: Decimal = Field(default=Decimal("0"), alias="closedPnl")
    date: Optional[datetime] = None

    def to_domain(self) -> Position:
        return Position(
            external_id=self.order_id or "",
            exchange=self.exchange.lower(),
            symbol=self.symbol,
            side=self.side,
            volume=self.volume,
            leverage=self.leverage,
            closed_pnl=self.closed_pnl,
            updated_at=self.date or _utc_now(),
        )


class WithdrawalIn(ApiModel):
    exchange: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = "USDT"
    date: Optional[datetime] = None

    def to_domain(self) -> Withdrawal:
        return Withdrawal(
            exchange=self.exchange.lower(),
            amount=self.amount,
            currency=self.currency,
            created_at=self.date or _utc_now(),
        )


class MonthlyIncomeIn(ApiModel):
    exchange: str = Field(min_length=1)
    amount: Decimal
    pnl: Decimal = Decimal("0")
    date: Optional[datetime] = None

    def to_domain(self) -> MonthlyIncome:
        return MonthlyIncome(
            exchange=self.exchange.lower(),
            amount=self.amount,
            pnl=self.pnl,
            created_at=self.date or _utc_now(),
        )


class ApiKeyIn(ApiModel):
    exchange: str = Field(min_length=1)
    api_key: str = Field(default="", alias="apiKey")
    api_secret: str = Field(default="", alias="apiSecret")

    def to_domain(self) -> Credential:
        return Credential(
            exchange=self.exchange.lower(),
            api_key=self.api_key,
            api_secret=self.api_secret,
        )


# =======================
# RESPONSES
# =======================

class PositionOut(ApiModel):
    id: Optional[int] = None
    order_id: str = Field(alias="orderId")
    exchange: str
    symbol: str
    volume: float
    leverage: int
    closed_pnl: float = Field(alias="closedPnl")
    side: str
    date: datetime

    @classmethod
    def from_domain(cls, position: Position) -> "PositionOut":
        return cls(
            id=position.id,
            order_id=position.external_id,
            exchange=position.exchange,
            symbol=position.symbol,
            volume=float(position.volume),
            leverage=position.leverage,
            closed_pnl=float(position.closed_pnl),
            side=position.side.value,
            date=position.updated_at,
        )


class WithdrawalOut(ApiModel):
    id: Optional[int] = None
    exchange: str
    amount: float
    currency: str
    date: datetime

    @classmethod
    def from_domain(cls, withdrawal: Withdrawal) -> "WithdrawalOut":
        return cls(
            id=withdrawal.id,
            exchange=withdrawal.exchange,
            amount=float(withdrawal.amount),
            currency=withdrawal.currency,
            date=withdrawal.created_at,
        )


class MonthlyIncomeOut(ApiModel):
    id: Optional[int] = None
    exchange: str
    amount: float
    pnl: float
    date: datetime

    @classmethod
    def from_domain(cls, income: MonthlyIncome) -> "MonthlyIncomeOut":
        return cls(
            id=income.id,
            exchange=income.exchange,
            amount=float(income.amount),
            pnl=float(income.pnl),
            date=income.created_at,
        )


class ApiKeyOut(ApiModel):
    """Always built from a masked credential."""
    exchange: str
    api_key: str = Field(alias="apiKey")
    api_secret: str = Field(alias="apiSecret")
    is_active: bool = Field(alias="isActive")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_domain(cls, credential: Credential) -> "ApiKeyOut":
        masked = credential.masked()
        return cls(
            exchange=masked.exchange,
            api_key=masked.api_key,
            api_secret=masked.api_secret,
            is_active=masked.is_active,
            updated_at=masked.updated_at,
        )


class ExchangeBalanceOut(ApiModel):
    exchange: str
    balance: float

    @classmethod
    def from_domain(cls, balance: ExchangeBalance) -> "ExchangeBalanceOut":
        return cls(exchange=balance.exchange, balance=float(balance.balance))


class BalanceOut(ApiModel):
    total_balance: float = Field(alias="totalBalance")
    exchange_balances: List[ExchangeBalanceOut] = Field(alias="exchangeBalances")


class StatusOut(ApiModel):
    status: str
    count: Optional[int] = None
