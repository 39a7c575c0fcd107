import threading
from enum import Enum
from typing import Iterable, List, Optional

from budget_tracker.config.logging import logger
from budget_tracker.core.deadline import Deadline
from budget_tracker.core.exceptions import (
    AppError,
    DataDestinationError,
    DataSourceError,
    NotFoundError,
)
from budget_tracker.core.models import Position
from budget_tracker.infrastructure.database.repositories import (
    CredentialRepository,
    PositionRepository,
)
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter
from budget_tracker.services.notifier import ChangeNotifier

POSITIONS_UPDATE = "positions_update"


class SchedulerState(str, Enum):
    IDLE = "idle"
    TICKING = "ticking"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    STOPPED = "stopped"


class SyncScheduler:
    """
    Keeps one exchange's closed positions in the store.

    Every `interval` seconds: load the credential, fetch through the adapter
    under a cycle deadline, upsert the batch, then broadcast the result.
    A failed cycle is logged (or quietly dropped when transient) and the next
    tick is the retry.
    """

    def __init__(
        self,
        exchange: str,
        adapter: BaseExchangeAdapter,
        credentials: CredentialRepository,
        positions: PositionRepository,
        notifier: Optional[ChangeNotifier] = None,
        interval: float = 30,
        cycle_timeout: float = 120,
    ):
        self.exchange = exchange
        self.adapter = adapter
        self.credentials = credentials
        self.positions = positions
        self.notifier = notifier
        self.interval = interval
        self.cycle_timeout = cycle_timeout

        self.state = SchedulerState.IDLE
        self.last_skipped = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._cycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self.state = SchedulerState.IDLE
        self._thread = threading.Thread(
            target=self._loop, name=f"sync-{self.exchange}", daemon=True
        )
        self._thread.start()
        logger.info(f"[{self.exchange}] Scheduler started. Interval: {self.interval} seconds")

    def request_stop(self):
        """Signal the loop without waiting for it."""
        self._stop_event.set()

    def stop(self, timeout: Optional[float] = None):
        """
        Stops ticking. A cycle already in flight runs to completion (bounded
        by its deadline) before this returns; no tick fires afterwards.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"[{self.exchange}] Scheduler did not stop within {timeout}s")
                return
            self._thread = None
        self.state = SchedulerState.STOPPED
        logger.info(f"[{self.exchange}] Scheduler stopped")

    def _loop(self):
        # first cycle right away, then every interval
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.interval):
                break
        self.state = SchedulerState.STOPPED

    def run_once(self) -> Optional[List[Position]]:
        """
        One sync cycle. Returns the persisted positions, or None when the
        cycle was skipped (exchange not configured) or failed.
        """
        with self._cycle_lock:
            try:
                return self._cycle()
            except Exception as e:
                # the thread must survive whatever one cycle throws
                logger.error(f"[{self.exchange}] Error during sync cycle: {e}")
                return None
            finally:
                if self.state is not SchedulerState.STOPPED:
                    self.state = SchedulerState.IDLE

    def _cycle(self) -> Optional[List[Position]]:
        self.state = SchedulerState.TICKING
        try:
            credential = self.credentials.get_by_exchange(self.exchange)
        except NotFoundError:
            return None
        except DataDestinationError as e:
            logger.error(f"[{self.exchange}] Could not load credentials: {e}")
            return None

        if not credential.is_configured:
            return None

        self.state = SchedulerState.FETCHING
        deadline = Deadline(self.cycle_timeout)
        try:
            result = self.adapter.fetch_closed_positions(
                credential.api_key, credential.api_secret, deadline=deadline
            )
        except DataSourceError as e:
            if e.is_transient:
                logger.debug(f"[{self.exchange}] Sync cycle ended early: {e}")
            else:
                logger.error(f"[{self.exchange}] Sync failed: {e}")
            return None
        except AppError as e:
            logger.error(f"[{self.exchange}] Sync failed: {e}")
            return None

        self.last_skipped = result.skipped
        if result.skipped:
            logger.warning(f"[{self.exchange}] Skipped {result.skipped} malformed records")

        self.state = SchedulerState.PERSISTING
        try:
            self.positions.upsert_batch(result.positions)
        except AppError as e:
            logger.error(f"[{self.exchange}] Failed to persist positions: {e}")
            return None

        logger.info(f"[{self.exchange}] Synced {len(result.positions)} positions")
        if self.notifier is not None:
            # sent even when nothing changed: "synced, nothing new" is news too
            self.notifier.broadcast({
                "type": POSITIONS_UPDATE,
                "positions": [p.to_dict() for p in result.positions],
                "count": len(result.positions),
                "exchange": self.exchange,
            })
        return result.positions


class SchedulerGroup:
    """Starts and stops one scheduler per exchange together."""

    def __init__(self, schedulers: Iterable[SyncScheduler] = ()):
        self.schedulers: List[SyncScheduler] = list(schedulers)

    def add(self, scheduler: SyncScheduler):
        self.schedulers.append(scheduler)

    def start(self):
        for scheduler in self.schedulers:
            scheduler.start()

    def stop(self, timeout: Optional[float] = None):
        for scheduler in self.schedulers:
            scheduler.request_stop()
        for scheduler in self.schedulers:
            scheduler.stop(timeout)

    def run_once(self):
        return {scheduler.exchange: scheduler.run_once() for scheduler in self.schedulers}
