import base64
import hashlib
import hmac
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import AuthenticationError, DataSourceError, RateLimitError
from budget_tracker.core.models import FetchResult
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter
from budget_tracker.infrastructure.exchanges.fields import optional_decimal

from .mapper import BitgetMapper

BASE_URL = "https://api.bitget.com"
PRODUCT_TYPE = "USDT-FUTURES"
SUCCESS_CODE = "00000"

RATE_LIMIT_CODES = {"429", "40018", "43011"}
AUTH_CODES = {"40006", "40009", "40012", "40037"}


def sign(api_secret: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """HMAC-SHA256(timestamp + method + requestPath + body), base64 encoded."""
    payload = timestamp + method.upper() + request_path + body
    digest = hmac.new(api_secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def build_query(params: Dict[str, Any]) -> str:
    return "&".join(f"{k}={v}" for k, v in sorted(params.items()))


class BitgetAdapter(BaseExchangeAdapter):
    """
    Bitget V2 mix (USDT futures) adapter.
    Cursor pagination: each page returns endId, passed back as idLessThan.
    """

    name = "bitget"

    def __init__(self, passphrase: Optional[str] = None, base_url: str = BASE_URL, **kwargs):
        super().__init__(**kwargs)
        self.passphrase = passphrase
        self.base_url = base_url

    def _request(
        self,
        endpoint: str,
        params: Dict[str, Any],
        api_key: str,
        api_secret: str,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        timestamp = str(int(time.time() * 1000))
        query_string = build_query(params)
        request_path = f"{endpoint}?{query_string}" if query_string else endpoint

        headers = {
            "ACCESS-KEY": api_key,
            "ACCESS-SIGN": sign(api_secret, timestamp, "GET", request_path),
            "ACCESS-TIMESTAMP": timestamp,
            "Content-Type": "application/json",
            "locale": "en-US",
        }
        if self.passphrase:
            headers["ACCESS-PASSPHRASE"] = self.passphrase

        response = self._send("GET", f"{self.base_url}{request_path}", headers, deadline=deadline)
        if response.status_code == 429:
            raise RateLimitError("Bitget HTTP 429", exchange=self.name, code=429)
        if response.status_code == 404:
            raise DataSourceError(f"Bitget endpoint not found: {endpoint}", exchange=self.name, code=404)
        data = self._json(response)
        code = str(data.get("code", "")) if isinstance(data, dict) else ""
        message = data.get("msg", "") if isinstance(data, dict) else ""

        if code in RATE_LIMIT_CODES:
            raise RateLimitError(f"Bitget rate limit: {message}", exchange=self.name, code=code)
        if response.status_code in (401, 403) or code in AUTH_CODES:
            raise AuthenticationError(f"Bitget auth error: {message}", exchange=self.name, code=code)
        if response.status_code != 200:
            raise DataSourceError(
                f"Bitget API error: status={response.status_code}, body={response.text[:200]}",
                exchange=self.name,
                code=response.status_code,
            )
        if not isinstance(data, dict) or code != SUCCESS_CODE:
            raise DataSourceError(f"Bitget API error: {message} (Code: {code})", exchange=self.name, code=code)
        return data

    def fetch_closed_positions(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        def fetch_page(cursor):
            params = {"productType": PRODUCT_TYPE, "limit": self.page_size}
            if cursor:
                params["idLessThan"] = cursor
            data = self._request(
                "/api/v2/mix/position/history-position", params, api_key, api_secret, deadline
            ).get("data") or {}
            if not isinstance(data, dict):
                return [], None
            items = data.get("list") or []
            if not isinstance(items, list):
                return [], None
            return items, data.get("endId")

        records = self._paginate(fetch_page)
        return self._decode(records, BitgetMapper.from_history_position)

    def fetch_balance(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> Decimal:
        try:
            data = self._request(
                "/api/v2/mix/account/accounts", {"productType": PRODUCT_TYPE}, api_key, api_secret, deadline
            )
        except DataSourceError as e:
            if e.code == 404:
                logger.debug(f"[{self.name}] Balance endpoint not found, reporting 0")
                return Decimal("0")
            raise

        accounts = data.get("data") or []
        if not isinstance(accounts, list):
            return Decimal("0")

        balance = sum(
            (optional_decimal(account, "usdtEquity") for account in accounts if isinstance(account, dict)),
            Decimal("0"),
        )
        logger.info(f"[{self.name}] Balance: {balance:.2f} USDT")
        return balance
