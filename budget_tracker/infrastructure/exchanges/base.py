import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests
from requests.exceptions import RequestException

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline, request_timeout
from budget_tracker.core.exceptions import (
    DataSourceError,
    MalformedRecordError,
    RetentionWindowError,
    SyncTimeoutError,
)
from budget_tracker.core.models import FetchResult, Position

DAY_MS = 24 * 60 * 60 * 1000

Page = Tuple[List[Dict[str, Any]], Optional[Any]]


def now_ms() -> int:
    return int(time.time() * 1000)


def iter_windows(start_ms: int, end_ms: int, window_ms: int) -> Iterator[Tuple[int, int]]:
    """
    Split [start_ms, end_ms] into non-overlapping windows of at most window_ms,
    newest first. Yields ceil((end - start) / window) inclusive (start, end) pairs.
    """
    upper = end_ms
    first = True
    while upper > start_ms:
        lower = max(start_ms, upper - window_ms)
        yield lower, (upper if first else upper - 1)
        first = False
        upper = lower


class BaseExchangeAdapter(ABC):
    """
    Abstract base class for exchange API adapters.
    Each adapter owns one HTTP session for its lifetime and turns one
    exchange's signing, pagination and payloads into canonical Positions.
    """

    name = ""
    page_size = 100
    max_pages = 200

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        request_delay: float = 0.05,
    ):
        """
        Args:
            session: Reusable HTTP session; one is created when omitted.
            timeout: Per-request timeout in seconds.
            request_delay: Pause between paginated/chunked calls, in seconds.
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.request_delay = request_delay

    # ---- contract -----------------------------------------------------

    @abstractmethod
    def fetch_closed_positions(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> FetchResult:
        """Retrieve every closed position the exchange still serves."""
        pass

    @abstractmethod
    def fetch_balance(
        self, api_key: str, api_secret: str, deadline: Optional[Deadline] = None
    ) -> Decimal:
        """Current account equity in USDT; 0 when empty or unsupported."""
        pass

    def close(self):
        self.session.close()

    # ---- transport ----------------------------------------------------

    def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> requests.Response:
        if deadline is not None:
            deadline.check(self.name)
        timeout = request_timeout(self.timeout, deadline)
        if timeout <= 0:
            # the deadline ran out between check() and cap()
            raise SyncTimeoutError("Sync cycle deadline exceeded", exchange=self.name)
        try:
            return self.session.request(
                method,
                url,
                headers=headers,
                data=body,
                timeout=timeout,
            )
        except requests.exceptions.Timeout as e:
            raise SyncTimeoutError(f"{self.name} request timed out: {e}", exchange=self.name)
        except RequestException as e:
            raise DataSourceError(f"Failed to connect to {self.name}: {e}", exchange=self.name)

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            raise DataSourceError(
                f"Failed to decode JSON response from {self.name}. "
                f"Status: {response.status_code}, body: {response.text[:200]}",
                exchange=self.name,
            )

    def _sleep(self):
        if self.request_delay > 0:
            time.sleep(self.request_delay)

    # ---- pagination ---------------------------------------------------

    def _paginate(self, fetch_page: Callable[[Optional[Any]], Page]) -> List[Dict[str, Any]]:
        """
        Call fetch_page(cursor) until the exchange signals the end: an empty
        page, a page shorter than page_size, or no continuation cursor.
        At most max_pages pages are fetched.
        """
        items: List[Dict[str, Any]] = []
        cursor = None
        for page_count in range(1, self.max_pages + 1):
            page, next_cursor = fetch_page(cursor)
            if not page:
                break
            items.extend(page)
            if len(page) < self.page_size or not next_cursor:
                break
            if page_count == self.max_pages:
                logger.warning(f"[{self.name}] Stopped after {self.max_pages} full pages")
                break
            cursor = next_cursor
            self._sleep()
        return items

    def _walk_windows(
        self,
        start_ms: int,
        end_ms: int,
        window_ms: int,
        fetch_window: Callable[[int, int], List[Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """
        Fetch [start_ms, end_ms] window by window, newest first. Stops early,
        keeping what was collected, when the exchange says a window is beyond
        its retention.
        """
        items: List[Dict[str, Any]] = []
        for index, (window_start, window_end) in enumerate(iter_windows(start_ms, end_ms, window_ms)):
            if index:
                self._sleep()
            try:
                items.extend(fetch_window(window_start, window_end))
            except RetentionWindowError as e:
                logger.debug(f"[{self.name}] Window beyond retention, stopping: {e}")
                break
        return items

    # ---- decoding -----------------------------------------------------

    def _decode(
        self, records: List[Any], mapper: Callable[[Dict[str, Any]], Position]
    ) -> FetchResult:
        positions: List[Position] = []
        skipped = 0
        for raw in records:
            if not isinstance(raw, dict):
                skipped += 1
                logger.debug(f"[{self.name}] Skipping non-object record: {raw!r}")
                continue
            try:
                positions.append(mapper(raw))
            except MalformedRecordError as e:
                skipped += 1
                logger.debug(f"[{self.name}] Skipping malformed record: {e}")
        return FetchResult(positions=positions, skipped=skipped)
