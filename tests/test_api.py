from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from budget_tracker.api.server import create_app
from budget_tracker.config.settings import Settings
from budget_tracker.services.container import build_container


class BalanceStub:
    def __init__(self, balance):
        self.balance = balance

    def fetch_balance(self, api_key, api_secret, deadline=None):
        return self.balance

    def close(self):
        pass


@pytest.fixture
def container(db):
    settings = Settings(_env_file=None, DATABASE_URL="sqlite://", SYNC_EXCHANGES="")
    adapters = {"bybit": BalanceStub(Decimal("1000.5")), "mexc": BalanceStub(Decimal("0"))}
    return build_container(settings, db=db, adapters=adapters)


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


POSITION = {
    "orderId": "ord-1",
    "exchange": "bybit",
    "symbol": "BTCUSDT",
    "side": "Buy",
    "volume": 2500,
    "leverage": 5,
    "closedPnl": 42.5,
    "date": "2024-03-01T10:00:00Z",
}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_position_crud(client):
    created = client.post("/api/v1/positions", json=POSITION)
    assert created.status_code == 201
    body = created.json()
    assert body["orderId"] == "ord-1"
    assert body["closedPnl"] == 42.5

    listed = client.get("/api/v1/positions").json()
    assert [p["orderId"] for p in listed] == ["ord-1"]
    assert client.get("/api/v1/positions", params={"exchange": "mexc"}).json() == []

    position_id = body["id"]
    assert client.get(f"/api/v1/positions/{position_id}").json()["symbol"] == "BTCUSDT"
    assert client.delete(f"/api/v1/positions/{position_id}").json() == {"status": "deleted"}
    assert client.get(f"/api/v1/positions/{position_id}").status_code == 404
    assert client.delete(f"/api/v1/positions/{position_id}").status_code == 404


def test_posting_same_order_twice_updates_in_place(client):
    client.post("/api/v1/positions", json=POSITION)
    client.post("/api/v1/positions", json=dict(POSITION, closedPnl=75))

    listed = client.get("/api/v1/positions").json()
    assert len(listed) == 1
    assert listed[0]["closedPnl"] == 75


def test_manual_position_without_order_id(client):
    body = client.post("/api/v1/positions", json={k: v for k, v in POSITION.items() if k != "orderId"}).json()
    assert body["orderId"].startswith("manual_position_")


def test_bad_input_is_rejected(client):
    assert client.post("/api/v1/positions", json=dict(POSITION, side="Sideways")).status_code == 422
    assert client.post("/api/v1/positions", json=dict(POSITION, volume="lots")).status_code == 422
    assert client.get("/api/v1/positions/not-a-number").status_code == 422


def test_test_data_helpers(client):
    created = client.post("/api/v1/positions/test-data", params={"count": 12})
    assert created.json() == {"status": "success", "count": 12}
    assert len(client.get("/api/v1/positions").json()) == 12

    deleted = client.delete("/api/v1/positions/test-data")
    assert deleted.json() == {"status": "deleted", "count": 12}
    assert client.get("/api/v1/positions").json() == []


def test_withdrawals(client):
    created = client.post("/api/v1/withdrawals", json={"exchange": "Bybit", "amount": 120.5})
    assert created.status_code == 201
    assert created.json()["exchange"] == "bybit"
    assert created.json()["currency"] == "USDT"

    assert len(client.get("/api/v1/withdrawals").json()) == 1
    withdrawal_id = created.json()["id"]
    assert client.delete(f"/api/v1/withdrawals/{withdrawal_id}").status_code == 200
    assert client.delete(f"/api/v1/withdrawals/{withdrawal_id}").status_code == 404
    assert client.post("/api/v1/withdrawals", json={"exchange": "bybit", "amount": -1}).status_code == 422


def test_monthly_income(client):
    created = client.post("/api/v1/monthly-income", json={"exchange": "mexc", "amount": 900, "pnl": 45})
    assert created.status_code == 201
    assert client.get("/api/v1/monthly-income", params={"exchange": "mexc"}).json()[0]["pnl"] == 45
    assert client.delete(f"/api/v1/monthly-income/{created.json()['id']}").json() == {"status": "deleted"}


def test_api_keys_are_masked(client):
    saved = client.post("/api/v1/api-keys", json=[
        {"exchange": "bybit", "apiKey": "ABCDEFGHIJKLWXYZ", "apiSecret": "SECRETVALUE12345"},
        {"exchange": "mexc", "apiKey": "short", "apiSecret": "tiny"},
    ])
    assert saved.json() == {"status": "saved"}

    keys = {k["exchange"]: k for k in client.get("/api/v1/api-keys").json()}
    assert keys["bybit"]["apiKey"] == "ABCD****WXYZ"
    assert keys["bybit"]["apiSecret"] == "SECR****2345"
    assert keys["mexc"]["apiKey"] == "****"
    assert keys["bybit"]["isActive"] is True

    single = client.get("/api/v1/api-keys", params={"exchange": "bybit"}).json()
    assert single[0]["apiKey"] == "ABCD****WXYZ"
    assert client.get("/api/v1/api-keys", params={"exchange": "gate"}).status_code == 404


def test_balance_skips_zero_exchanges(client):
    client.post("/api/v1/api-keys", json=[
        {"exchange": "bybit", "apiKey": "key", "apiSecret": "secret"},
        {"exchange": "mexc", "apiKey": "key", "apiSecret": "secret"},
    ])

    body = client.get("/api/v1/balance").json()
    assert body == {"totalBalance": 1000.5, "exchangeBalances": [{"exchange": "bybit", "balance": 1000.5}]}


def test_websocket_receives_broadcasts(client, container):
    with client.websocket_connect("/api/v1/ws") as websocket:
        client.post("/api/v1/positions", json=POSITION)
        message = websocket.receive_json()
        assert message["type"] == "position_created"
        assert message["data"]["orderId"] == "ord-1"

        container.notifier.broadcast({"type": "positions_update", "positions": [], "count": 0, "exchange": "bybit"})
        assert websocket.receive_json()["count"] == 0

    assert container.notifier.subscriber_count == 0
