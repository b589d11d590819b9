"""Process-local per-recipient notification counters.

Fed off the dispatch path after in-app delivery. Counts are not durable; the
log store is the source of truth.
"""

import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor

from notifier.common.logging import logger
from notifier.common.metrics import stats_updates_lost_total
from notifier.services.notification.enums import NotificationType


class StatsAggregator:
    def __init__(self, service_name: str = "notification") -> None:
        self._counts: dict[str, Counter] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notification-stats")
        self.service_name = service_name

    def increment(self, recipient: str, type_: NotificationType) -> None:
        with self._lock:
            self._counts.setdefault(recipient, Counter())[NotificationType(type_)] += 1

    def record_async(self, recipient: str, type_: NotificationType) -> Future:
        """Queue an increment; a lost update is logged, never raised."""

        future = self._executor.submit(self.increment, recipient, type_)
        future.add_done_callback(self._log_lost_update)
        return future

    def _log_lost_update(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            stats_updates_lost_total.labels(service=self.service_name).inc()
            logger.warning("stats_update_lost error=%s", exc)

    def total(self, recipient: str) -> int:
        with self._lock:
            return sum(self._counts.get(recipient, Counter()).values())

    def by_type(self, recipient: str) -> dict[NotificationType, int]:
        with self._lock:
            return dict(self._counts.get(recipient, Counter()))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
