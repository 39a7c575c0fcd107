import json
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest

from budget_tracker.core.models import Position, Side
from budget_tracker.infrastructure.database.engine import Database


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    """
    Stands in for requests.Session.
    Either replays `responses` in order or asks `handler(path, params)`.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.requests = []
        self.closed = False

    def request(self, method, url, headers=None, data=None, timeout=None):
        parts = urlsplit(url)
        params = dict(parse_qsl(parts.query))
        self.requests.append({
            "method": method,
            "url": url,
            "path": parts.path,
            "query": parts.query,
            "params": params,
            "headers": headers or {},
            "timeout": timeout,
        })
        if self.handler is not None:
            result = self.handler(parts.path, params)
        else:
            assert self.responses, f"Unexpected request: {url}"
            result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True

    def calls_to(self, path):
        return [r for r in self.requests if r["path"] == path]


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_all()
    yield database
    database.dispose()


def make_position(external_id="123", exchange="bybit", closed_pnl="50", when=None, **overrides):
    values = dict(
        external_id=external_id,
        exchange=exchange,
        symbol="BTCUSDT",
        side=Side.BUY,
        volume=Decimal("1000"),
        leverage=10,
        closed_pnl=Decimal(closed_pnl),
        updated_at=when or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Position(**values)
