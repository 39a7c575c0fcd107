import base64
import hashlib
import hmac
from decimal import Decimal

import pytest

from budget_tracker.core.exceptions import AuthenticationError, RateLimitError
from budget_tracker.infrastructure.exchanges import base
from budget_tracker.infrastructure.exchanges.bitget.client import BitgetAdapter, sign
from conftest import FakeResponse, FakeSession


def ok(data):
    return FakeResponse({"code": "00000", "msg": "success", "data": data})


def record(position_id, hold_side="long"):
    return {
        "positionId": position_id,
        "symbol": "btcusdt",
        "holdSide": hold_side,
        "openAvgPrice": "60000",
        "closeTotalPos": "0.5",
        "netProfit": "120.75",
        "utime": "1710000000000",
    }


def make_adapter(responses, passphrase="phrase"):
    session = FakeSession(responses=responses)
    return BitgetAdapter(passphrase=passphrase, session=session, request_delay=0), session


def test_sign_is_base64_of_hmac():
    path = "/api/v2/mix/position/history-position?limit=100&productType=USDT-FUTURES"
    digest = hmac.new(b"secret", ("1700000000000GET" + path).encode(), hashlib.sha256).digest()
    assert sign("secret", "1700000000000", "get", path) == base64.b64encode(digest).decode()


def test_request_headers():
    adapter, session = make_adapter([ok({"list": [], "endId": None})])
    adapter.fetch_closed_positions("key", "secret")

    sent = session.requests[0]
    headers = sent["headers"]
    assert headers["ACCESS-KEY"] == "key"
    assert headers["ACCESS-PASSPHRASE"] == "phrase"
    request_path = f"{sent['path']}?{sent['query']}"
    assert headers["ACCESS-SIGN"] == sign("secret", headers["ACCESS-TIMESTAMP"], "GET", request_path)


def test_no_passphrase_header_when_unset():
    adapter, session = make_adapter([ok({"list": []})], passphrase=None)
    adapter.fetch_closed_positions("key", "secret")
    assert "ACCESS-PASSPHRASE" not in session.requests[0]["headers"]


def test_cursor_pagination_with_end_id():
    adapter, session = make_adapter([
        ok({"list": [record("1"), record("2", "short")], "endId": "2"}),
        ok({"list": [record("3")], "endId": "3"}),
    ])
    adapter.page_size = 2
    result = adapter.fetch_closed_positions("key", "secret")

    assert [p.external_id for p in result.positions] == ["1", "2", "3"]
    assert "idLessThan" not in session.requests[0]["params"]
    assert session.requests[1]["params"]["idLessThan"] == "2"

    first, second = result.positions[:2]
    assert first.symbol == "BTCUSDT"
    assert first.side.value == "Buy"
    assert second.side.value == "Sell"
    assert first.volume == Decimal("30000.0")
    assert first.closed_pnl == Decimal("120.75")
    assert first.leverage == 1


def test_rate_limit_status_without_json_body():
    adapter, _ = make_adapter([FakeResponse(None, status_code=429, text="Too Many Requests")])
    with pytest.raises(RateLimitError):
        adapter.fetch_closed_positions("key", "secret")


def test_auth_error_code():
    adapter, _ = make_adapter([
        FakeResponse({"code": "40037", "msg": "Apikey does not exist"}, status_code=400)
    ])
    with pytest.raises(AuthenticationError):
        adapter.fetch_closed_positions("key", "secret")


def test_balance_sums_usdt_equity():
    adapter, _ = make_adapter([ok([{"usdtEquity": "100.5"}, {"usdtEquity": "20"}, {"marginCoin": "USDC"}])])
    assert adapter.fetch_balance("key", "secret") == Decimal("120.5")


def test_request_delay_between_pages(monkeypatch):
    pauses = []
    monkeypatch.setattr(base.time, "sleep", pauses.append)
    adapter, session = make_adapter([
        ok({"list": [record("1"), record("2")], "endId": "2"}),
        ok({"list": [record("3"), record("4")], "endId": "4"}),
        ok({"list": [record("5")], "endId": "5"}),
    ])
    adapter.page_size = 2
    adapter.request_delay = 0.1
    adapter.fetch_closed_positions("key", "secret")

    assert len(session.requests) == 3
    assert pauses == [0.1, 0.1]


def test_balance_missing_endpoint_reports_zero():
    adapter, _ = make_adapter([FakeResponse(None, status_code=404, text="Not Found")])
    assert adapter.fetch_balance("key", "secret") == Decimal("0")
