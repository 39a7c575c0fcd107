from typing import Any, Dict

from budget_tracker.core.exceptions import MalformedRecordError
from budget_tracker.core.models import Position, Side
from budget_tracker.infrastructure.exchanges.fields import (
    millis_to_datetime,
    optional_int,
    required_decimal,
    required_str,
)

EXCHANGE = "bitget"

HOLD_SIDES = {"long": Side.BUY, "short": Side.SELL}


class BitgetMapper:

    @staticmethod
    def from_history_position(raw: Dict[str, Any]) -> Position:
        # USDT-M sizes are in base coin, so no contract multiplier
        hold_side = required_str(raw, "holdSide").lower()
        if hold_side not in HOLD_SIDES:
            raise MalformedRecordError(f"unknown holdSide {hold_side!r}", field="holdSide")
        return Position(
            external_id=required_str(raw, "positionId"),
            exchange=EXCHANGE,
            symbol=required_str(raw, "symbol").upper(),
            side=HOLD_SIDES[hold_side],
            volume=required_decimal(raw, "closeTotalPos") * required_decimal(raw, "openAvgPrice"),
            leverage=optional_int(raw, "leverage", default=1),
            closed_pnl=required_decimal(raw, ("netProfit", "pnl")),
            updated_at=millis_to_datetime(raw, ("utime", "ctime")),
        )
