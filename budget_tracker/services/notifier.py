import threading
from typing import Any, Callable, List

from budget_tracker.config.logging import logger

Subscriber = Callable[[Any], None]


class ChangeNotifier:
    """
    Fire-and-forget fan-out of change messages.
    Called from scheduler threads and request handlers alike.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns the function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def broadcast(self, message: Any):
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(message)
            except Exception as e:
                # one broken listener must not starve the others
                logger.warning(f"Notifier subscriber failed: {e}")
