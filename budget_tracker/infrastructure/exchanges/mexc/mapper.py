from decimal import Decimal
from typing import Any, Dict

from budget_tracker.core.exceptions import MalformedRecordError
from budget_tracker.core.models import Position, Side
from budget_tracker.infrastructure.exchanges.fields import (
    millis_to_datetime,
    optional_int,
    required_decimal,
    required_str,
)

EXCHANGE = "mexc"

# base-asset units per contract; MEXC quotes futures volume in contracts
CONTRACT_SIZES = {
    "BTCUSDT": Decimal("0.001"),
    "ETHUSDT": Decimal("0.01"),
}
DEFAULT_CONTRACT_SIZE = Decimal("10")

POSITION_TYPES = {1: Side.BUY, 2: Side.SELL}
# order side: 1 open long, 2 close short, 3 open short, 4 close long
DEAL_SIDES = {1: Side.BUY, 4: Side.BUY, 2: Side.SELL, 3: Side.SELL}


def contract_size(symbol: str) -> Decimal:
    return CONTRACT_SIZES.get(symbol.replace("_", "").upper(), DEFAULT_CONTRACT_SIZE)


def _enum(raw: Dict[str, Any], key: str, table: Dict[int, Side]) -> Side:
    value = optional_int(raw, key, default=0)
    if value not in table:
        raise MalformedRecordError(f"unknown {key} {raw.get(key)!r}", field=key)
    return table[value]


class MexcMapper:
    """
    Turns MEXC contract API records into canonical Positions.
    Volume = closed contracts * entry price * contract size.
    """

    @staticmethod
    def from_history_position(raw: Dict[str, Any]) -> Position:
        symbol = required_str(raw, "symbol")
        volume = (
            required_decimal(raw, "closeVol")
            * required_decimal(raw, "openAvgPrice")
            * contract_size(symbol)
        )
        return Position(
            external_id=required_str(raw, "positionId"),
            exchange=EXCHANGE,
            symbol=symbol,
            side=_enum(raw, "positionType", POSITION_TYPES),
            volume=volume,
            leverage=optional_int(raw, "leverage", default=1),
            closed_pnl=required_decimal(raw, ("closeProfitLoss", "realised")),
            updated_at=millis_to_datetime(raw, ("updateTime", "createTime")),
        )

    @staticmethod
    def from_deal(raw: Dict[str, Any]) -> Position:
        """Alternate response shape: data.list of filled deals."""
        symbol = required_str(raw, "symbol")
        volume = (
            required_decimal(raw, "dealQty")
            * required_decimal(raw, "dealAvgPrice")
            * contract_size(symbol)
        )
        return Position(
            external_id=required_str(raw, "orderId"),
            exchange=EXCHANGE,
            symbol=symbol,
            side=_enum(raw, "side", DEAL_SIDES),
            volume=volume,
            leverage=optional_int(raw, "leverage", default=1),
            closed_pnl=required_decimal(raw, "profit"),
            updated_at=millis_to_datetime(raw, ("updateTime", "createTime")),
        )
