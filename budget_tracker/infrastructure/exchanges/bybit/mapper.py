from typing import Any, Dict

from budget_tracker.core.exceptions import MalformedRecordError
from budget_tracker.core.models import Position, Side
from budget_tracker.infrastructure.exchanges.fields import (
    millis_to_datetime,
    optional_decimal,
    optional_int,
    required_decimal,
    required_str,
)

EXCHANGE = "bybit"


def _side(raw: Dict[str, Any]) -> Side:
    value = required_str(raw, "side")
    try:
        return Side(value.capitalize())
    except ValueError:
        raise MalformedRecordError(f"unknown side {value!r}", field="side")


class BybitMapper:
    """
    Turns Bybit V5 records into canonical Positions.
    """

    @staticmethod
    def from_closed_pnl(raw: Dict[str, Any]) -> Position:
        """
        /v5/position/closed-pnl record.
        Volume is the exchange-reported entry notional (cumEntryValue).
        """
        return Position(
            external_id=required_str(raw, "orderId"),
            exchange=EXCHANGE,
            symbol=required_str(raw, "symbol"),
            side=_side(raw),
            volume=required_decimal(raw, "cumEntryValue"),
            leverage=optional_int(raw, "leverage", default=1),
            closed_pnl=required_decimal(raw, "closedPnl"),
            updated_at=millis_to_datetime(raw, ("updatedTime", "createdTime")),
        )

    @staticmethod
    def from_execution(raw: Dict[str, Any]) -> Position:
        """
        /v5/execution/list record with a non-zero closedSize.
        Executions carry no entry price, so volume = closedSize * execPrice.
        """
        closed_size = required_decimal(raw, "closedSize")
        if closed_size == 0:
            raise MalformedRecordError("execution did not close a position", field="closedSize")
        return Position(
            external_id=required_str(raw, "orderId"),
            exchange=EXCHANGE,
            symbol=required_str(raw, "symbol"),
            side=_side(raw),
            volume=closed_size * required_decimal(raw, "execPrice"),
            leverage=optional_int(raw, "leverage", default=1),
            closed_pnl=optional_decimal(raw, "closedPnl"),
            updated_at=millis_to_datetime(raw, "execTime"),
        )
