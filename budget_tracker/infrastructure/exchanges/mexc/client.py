import hashlib
import hmac
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import AuthenticationError, DataSourceError, RateLimitError
from budget_tracker.core.models import FetchResult
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter
from budget_tracker.infrastructure.exchanges.fields import optional_decimal

from .mapper import MexcMapper

BASE_URL = "https://api.mexc.com"

RATE_LIMIT_CODES = {510}
AUTH_CODES = {401, 402, 602}

HISTORY = "history"
DEAL = "deal"


def sign(api_key: str, api_secret: str, timestamp: str, query_string: str) -> str:
    """HMAC-SHA256(apiKey + Request-Time + sortedQueryString), hex encoded."""
    payload = api_key + timestamp + query_string
    return hmac.new(api_secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def build_query(params: Dict[str, Any]) -> str:
    # MEXC signs the parameters in alphabetical order
    return "&".join(f"{k}={params[k]}" for k in sorted(params))


class MexcAdapter(BaseExchangeAdapter):
    """
    MEXC contract (futures) API adapter, /api/v1/private/* endpoints.
    Page-number pagination; the last page is the first one shorter than page_size.
    """

    name = "mexc"

    def __init__(self, base_url: str = BASE_URL, **kwargs):
        super().__init__(**kwargs)
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

        headers = {
            "ApiKey": api_key,
            "Request-Time": timestamp,
            "Signature": sign(api_key, api_secret, timestamp, query_string),
            "Content-Type": "application/json",
        }

        url = f"{self.base_url}{endpoint}"
        if query_string:
            url += f"?{query_string}"

        response = self._send("GET", url, headers, deadline=deadline)
        if response.status_code == 429:
            raise RateLimitError("MEXC HTTP 429", exchange=self.name, code=429)
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"MEXC rejected credentials (HTTP {response.status_code})",
                exchange=self.name,
                code=response.status_code,
            )
        if response.status_code != 200:
            raise DataSourceError(
                f"MEXC API v1 error: status={response.status_code}, body={response.text[:200]}",
                exchange=self.name,
                code=response.status_code,
            )

        data = self._json(response)
        if not isinstance(data, dict):
            raise DataSourceError("MEXC returned a non-object body", exchange=self.name)

        try:
            code = int(data.get("code", -1))
        except (TypeError, ValueError):
            code = -1
        if data.get("success") is True and code == 0:
            return data

        message = data.get("message") or data.get("msg") or ""
        if code in RATE_LIMIT_CODES:
            raise RateLimitError(f"MEXC rate limit: {message}", exchange=self.name, code=code)
        if code in AUTH_CODES:
            raise AuthenticationError(f"MEXC auth error: {message}", exchange=self.name, code=code)
        raise DataSourceError(
            f"MEXC API v1 error: success={data.get('success')}, code={code}, message={message}",
            exchange=self.name,
            code=code,
        )

    def fetch_closed_positions(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        def fetch_page(page_num):
            page_num = page_num or 1
            data = self._request(
                "/api/v1/private/position/list/history_positions",
                {"page_num": page_num, "page_size": self.page_size},
                api_key,
                api_secret,
                deadline,
            ).get("data")
            items = _tag_records(data)
            logger.debug(f"[{self.name}] Page {page_num}: {len(items)} positions")
            return items, page_num + 1

        tagged = self._paginate(fetch_page)

        history = self._decode([raw for shape, raw in tagged if shape == HISTORY], MexcMapper.from_history_position)
        deals = self._decode([raw for shape, raw in tagged if shape == DEAL], MexcMapper.from_deal)
        return FetchResult(
            positions=history.positions + deals.positions,
            skipped=history.skipped + deals.skipped,
        )

    def fetch_balance(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> Decimal:
        try:
            data = self._request("/api/v1/private/account/overview", {}, api_key, api_secret, deadline)
        except DataSourceError as e:
            if e.code == 404:
                logger.debug(f"[{self.name}] Balance endpoint not found, reporting 0")
                return Decimal("0")
            raise

        overview = data.get("data")
        if not isinstance(overview, dict):
            return Decimal("0")
        balance = optional_decimal(overview, "accountBalance")
        logger.info(f"[{self.name}] Balance: {balance:.2f} USDT")
        return balance


def _tag_records(data: Any) -> List[Tuple[str, Any]]:
    """
    history_positions answers either with a bare list of positions or with an
    object holding a list of deals, depending on the API revision.
    """
    if isinstance(data, list):
        return [(HISTORY, raw) for raw in data]
    if isinstance(data, dict):
        deals = data.get("list")
        if isinstance(deals, list):
            return [(DEAL, raw) for raw in deals]
        result = data.get("resultList")
        if isinstance(result, list):
            return [(HISTORY, raw) for raw in result]
    return []
