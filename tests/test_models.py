from datetime import datetime, timezone
from decimal import Decimal

import pytest

from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import MalformedRecordError, SyncTimeoutError
from budget_tracker.core.models import Credential, Position, Side, mask_secret
from budget_tracker.infrastructure.exchanges.base import iter_windows
from budget_tracker.infrastructure.exchanges.fields import (
    millis_to_datetime,
    optional_decimal,
    required_decimal,
)
from conftest import make_position


@pytest.mark.parametrize("leverage", [0, None, -3])
def test_leverage_defaults_to_one(leverage):
    position = make_position(leverage=leverage)
    assert position.leverage == 1
    assert position.margin == position.volume


def test_side_is_coerced_from_string():
    assert make_position(side="Sell").side is Side.SELL


def test_to_dict_uses_wire_names():
    data = make_position(external_id="abc", closed_pnl="-3.5").to_dict()
    assert data["orderId"] == "abc"
    assert data["closedPnl"] == -3.5
    assert data["side"] == "Buy"
    assert data["date"] == "2024-03-15T12:00:00+00:00"


def test_is_profit():
    assert make_position(closed_pnl="0.01").is_profit()
    assert not make_position(closed_pnl="0").is_profit()


def test_mask_secret():
    assert mask_secret("ABCDEFGHIJKLWXYZ") == "ABCD****WXYZ"
    assert mask_secret("short") == "****"
    assert mask_secret("12345678") == "****"
    assert mask_secret("123456789") == "1234****6789"


def test_credential_masked_and_configured():
    credential = Credential(exchange="bybit", api_key="KEY1234567890", api_secret="SECRETSECRET99")
    masked = credential.masked()
    assert masked.api_key == "KEY1****7890"
    assert masked.api_secret == "SECR****ET99"
    assert credential.is_configured
    assert not Credential(exchange="mexc", api_key="k", api_secret="").is_configured
    assert not Credential(exchange="mexc", api_key="k", api_secret="s", is_active=False).is_configured


def test_iter_windows_count_and_bounds():
    windows = list(iter_windows(0, 100, 30))
    assert windows == [(70, 100), (40, 69), (10, 39), (0, 9)]


def test_iter_windows_exact_multiple():
    assert len(list(iter_windows(0, 90, 30))) == 3


def test_iter_windows_empty_span():
    assert list(iter_windows(50, 50, 10)) == []


def test_field_decoders_distinguish_missing_from_unparsable():
    assert optional_decimal({}, "x") == Decimal("0")
    assert optional_decimal({"x": ""}, "x", default=Decimal("7")) == Decimal("7")
    assert required_decimal({"a": None, "b": "2.5"}, ("a", "b")) == Decimal("2.5")

    with pytest.raises(MalformedRecordError) as missing:
        required_decimal({}, "x")
    assert "missing" in str(missing.value)

    with pytest.raises(MalformedRecordError) as garbage:
        optional_decimal({"x": "1,5"}, "x")
    assert garbage.value.field == "x"

    with pytest.raises(MalformedRecordError):
        required_decimal({"x": True}, "x")


def test_millis_to_datetime_is_utc():
    assert millis_to_datetime({"t": "0"}, "t") == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_deadline_expires():
    now = [100.0]
    deadline = Deadline(5, clock=lambda: now[0])
    assert deadline.cap(30) == 5
    deadline.check("bybit")

    now[0] = 106.0
    assert deadline.expired
    assert deadline.remaining() == 0
    with pytest.raises(SyncTimeoutError):
        deadline.check("bybit")
