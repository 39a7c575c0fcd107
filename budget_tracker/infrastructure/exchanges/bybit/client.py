import hashlib
import hmac
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import (
    AuthenticationError,
    DataSourceError,
    MalformedRecordError,
    RateLimitError,
    RetentionWindowError,
)
from budget_tracker.core.models import FetchResult, Position
from budget_tracker.infrastructure.exchanges.base import DAY_MS, BaseExchangeAdapter, now_ms
from budget_tracker.infrastructure.exchanges.fields import optional_decimal, to_decimal

from .mapper import BybitMapper

MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"

# closed PnL is served for two years, at most seven days per request
WINDOW_MS = 7 * DAY_MS
RETENTION_MS = 730 * DAY_MS
# execution history fallback only looks back 30 days
EXECUTION_LOOKBACK_MS = 30 * DAY_MS

RATE_LIMIT_CODES = {10006, 10018}
AUTH_CODES = {10003, 10004, 10005, 33004}
RETENTION_MESSAGE = "earlier than 2 years"


def sign(api_key: str, api_secret: str, timestamp: str, recv_window: str, query_string: str) -> str:
    """HMAC-SHA256(timestamp + apiKey + recvWindow + queryString), hex encoded."""
    payload = timestamp + api_key + recv_window + query_string
    return hmac.new(api_secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def build_query(params: Dict[str, Any]) -> str:
    return "&".join(f"{k}={v}" for k, v in sorted(params.items()))


class BybitAdapter(BaseExchangeAdapter):
    """
    Bybit V5 adapter.
    Primary strategy: closed-pnl in 7-day windows over the 2-year retention.
    Fallback strategy: execution history reconstruction, used only when the
    primary strategy returns nothing.
    """

    name = "bybit"

    def __init__(
        self,
        testnet: bool = False,
        recv_window: str = "5000",
        clock: Callable[[], int] = now_ms,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = TESTNET_URL if testnet else MAINNET_URL
        self.recv_window = recv_window
        self._clock = clock

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

        headers = {
            "X-BAPI-API-KEY": api_key,
            "X-BAPI-SIGN": sign(api_key, api_secret, timestamp, self.recv_window, query_string),
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": self.recv_window,
            "Content-Type": "application/json",
        }

        url = f"{self.base_url}{endpoint}"
        if query_string:
            url += f"?{query_string}"

        response = self._send("GET", url, headers, deadline=deadline)
        if response.status_code == 429:
            raise RateLimitError("Bybit HTTP 429", exchange=self.name, code=429)
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Bybit rejected credentials (HTTP {response.status_code})",
                exchange=self.name,
                code=response.status_code,
            )
        if response.status_code != 200:
            raise DataSourceError(
                f"Bybit HTTP {response.status_code}: {response.text[:200]}",
                exchange=self.name,
                code=response.status_code,
            )

        data = self._json(response)
        if not isinstance(data, dict):
            raise DataSourceError("Bybit returned a non-object body", exchange=self.name)
        self._raise_for_ret_code(data)
        return data

    def _raise_for_ret_code(self, data: Dict[str, Any]):
        try:
            code = int(data.get("retCode", -1))
        except (TypeError, ValueError):
            code = -1
        if code == 0:
            return
        message = str(data.get("retMsg", ""))
        if RETENTION_MESSAGE in message.lower():
            raise RetentionWindowError(f"Bybit: {message}", exchange=self.name, code=code)
        if code in RATE_LIMIT_CODES:
            raise RateLimitError(f"Bybit rate limit: {message}", exchange=self.name, code=code)
        if code in AUTH_CODES:
            raise AuthenticationError(f"Bybit auth error: {message}", exchange=self.name, code=code)
        raise DataSourceError(f"Bybit API Error: {message} (Code: {code})", exchange=self.name, code=code)

    def _cursor_pages(
        self,
        endpoint: str,
        params: Dict[str, Any],
        api_key: str,
        api_secret: str,
        deadline: Optional[Deadline],
    ) -> List[Dict[str, Any]]:
        def fetch_page(cursor):
            page_params = dict(params, limit=self.page_size)
            if cursor:
                page_params["cursor"] = cursor
            result = _result(self._request(endpoint, page_params, api_key, api_secret, deadline))
            items = result.get("list") or []
            if not isinstance(items, list):
                return [], None
            return items, result.get("nextPageCursor")

        return self._paginate(fetch_page)

    # ---- closed positions ---------------------------------------------

    def fetch_closed_positions(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        result = self.fetch_closed_pnl(api_key, api_secret, deadline)
        if result.positions:
            return result

        logger.warning(f"[{self.name}] closed-pnl returned nothing, trying execution history")
        fallback = self.fetch_execution_history(api_key, api_secret, deadline)
        return FetchResult(positions=fallback.positions, skipped=result.skipped + fallback.skipped)

    def fetch_closed_pnl(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        """Primary strategy: /v5/position/closed-pnl over the full retention."""
        end = self._clock()
        # one day of slack keeps the oldest window clear of the retention error
        start = end - RETENTION_MS + DAY_MS

        def fetch_window(window_start, window_end):
            return self._cursor_pages(
                "/v5/position/closed-pnl",
                {"category": "linear", "startTime": window_start, "endTime": window_end},
                api_key,
                api_secret,
                deadline,
            )

        records = self._walk_windows(start, end, WINDOW_MS, fetch_window)
        return self._decode(records, BybitMapper.from_closed_pnl)

    def fetch_execution_history(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        """Fallback strategy: rebuild closed positions from closing executions."""
        end = self._clock()
        start = end - EXECUTION_LOOKBACK_MS

        def fetch_window(window_start, window_end):
            return self._cursor_pages(
                "/v5/execution/list",
                {"category": "linear", "startTime": window_start, "endTime": window_end},
                api_key,
                api_secret,
                deadline,
            )

        executions = [
            raw for raw in self._walk_windows(start, end, WINDOW_MS, fetch_window)
            if _is_closing(raw)
        ]
        decoded = self._decode(executions, BybitMapper.from_execution)

        # one position per order, the latest execution wins
        by_order: Dict[str, Position] = {}
        for position in decoded.positions:
            current = by_order.get(position.external_id)
            if current is None or position.updated_at >= current.updated_at:
                by_order[position.external_id] = position

        logger.info(f"[{self.name}] Rebuilt {len(by_order)} closed positions from {len(executions)} executions")
        return FetchResult(positions=list(by_order.values()), skipped=decoded.skipped)

    # ---- balance ------------------------------------------------------

    def fetch_balance(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> Decimal:
        try:
            data = self._request(
                "/v5/account/wallet-balance", {"accountType": "UNIFIED"}, api_key, api_secret, deadline
            )
        except DataSourceError as e:
            if e.code == 404:
                logger.debug(f"[{self.name}] Balance endpoint not found, reporting 0")
                return Decimal("0")
            raise

        accounts = _result(data).get("list") or []
        if not isinstance(accounts, list) or not accounts or not isinstance(accounts[0], dict):
            return Decimal("0")
        balance = optional_decimal(accounts[0], "totalEquity")
        logger.info(f"[{self.name}] Balance: {balance:.2f} USDT")
        return balance


def _result(data: Dict[str, Any]) -> Dict[str, Any]:
    result = data.get("result")
    return result if isinstance(result, dict) else {}


def _is_closing(raw: Any) -> bool:
    """True for executions that closed some size; unparsable ones pass through to be counted as skipped."""
    if not isinstance(raw, dict):
        return True
    value = raw.get("closedSize")
    if value in (None, ""):
        return False
    try:
        return to_decimal(value, "closedSize") != 0
    except MalformedRecordError:
        return True
