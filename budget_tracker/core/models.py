from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class Side(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


@dataclass(frozen=True)
class Position:
    """
    Canonical closed position (domain model).
    Independent of any exchange API or database format.
    """
    external_id: str       # the exchange's own id for the closed trade/order
    exchange: str          # source tag, e.g. "bybit"
    symbol: str            # instrument, e.g. "BTCUSDT"
    side: Side
    volume: Decimal        # entry notional
    leverage: int
    closed_pnl: Decimal    # realized PnL in quote currency
    updated_at: datetime   # exchange-reported close/update time (UTC)

    # surrogate key, only set for rows loaded from the store
    id: Optional[int] = None

    def __post_init__(self):
        # margin math divides by leverage
        if not self.leverage or self.leverage < 1:
            object.__setattr__(self, "leverage", 1)
        if not isinstance(self.side, Side):
            object.__setattr__(self, "side", Side(self.side))

    @property
    def margin(self) -> Decimal:
        return self.volume / self.leverage

    def is_profit(self) -> bool:
        return self.closed_pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "orderId": self.external_id,
            "exchange": self.exchange,
            "symbol": self.symbol,
            "volume": float(self.volume),
            "leverage": self.leverage,
            "closedPnl": float(self.closed_pnl),
            "side": self.side.value,
            "date": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class FetchResult:
    """Adapter output: decoded positions plus how many raw records were dropped."""
    positions: List[Position] = field(default_factory=list)
    skipped: int = 0


def mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-4:]


@dataclass(frozen=True)
class Credential:
    exchange: str
    api_key: str
    api_secret: str
    is_active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.is_active and self.api_key and self.api_secret)

    def masked(self) -> "Credential":
        return replace(
            self,
            api_key=mask_secret(self.api_key) if self.api_key else "",
            api_secret=mask_secret(self.api_secret) if self.api_secret else "",
        )


@dataclass(frozen=True)
class ExchangeBalance:
    """Computed on request, never persisted."""
    exchange: str
    balance: Decimal


@dataclass(frozen=True)
class Withdrawal:
    exchange: str
    amount: Decimal
    currency: str
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class MonthlyIncome:
    exchange: str
    amount: Decimal
    pnl: Decimal
    created_at: datetime
    id: Optional[int] = None
