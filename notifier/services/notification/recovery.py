"""Failed-notification recovery loop.

Replays FAILED rows that still have attempts to spare. Each replay is a fresh
dispatch with its own log row; the FAILED row stays as history. The same entry
point serves the scheduled task and the manual trigger.

Candidates are row-locked for the whole pass (`SKIP LOCKED`), so replicas running
the loop concurrently never replay the same row; the in-flight set covers
overlapping passes inside one process.
"""

import asyncio
import threading
from dataclasses import dataclass

from notifier.common.logging import logger
from notifier.common.metrics import recovery_replays_total
from notifier.services.notification.repository import NotificationLogRepository
from notifier.services.notification.schemas import NotificationRequest
from notifier.services.notification.service import NotificationService


@dataclass
class RecoverySummary:
    candidates: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class RecoveryLoop:
    def __init__(
        self,
        service: NotificationService,
        log_repository: NotificationLogRepository,
        interval_seconds: float = 300,
    ) -> None:
        self.service = service
        self.log_repository = log_repository
        self.interval_seconds = interval_seconds
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def _claim(self, log_id: str) -> bool:
        with self._lock:
            if log_id in self._in_flight:
                return False
            self._in_flight.add(log_id)
            return True

    def _release(self, log_id: str) -> None:
        with self._lock:
            self._in_flight.discard(log_id)

    def _record(self, summary: RecoverySummary, outcome: str) -> None:
        setattr(summary, outcome, getattr(summary, outcome) + 1)
        recovery_replays_total.labels(service=self.service.service_name, outcome=outcome).inc()

    def run_once(self) -> RecoverySummary:
        """Replay every eligible FAILED row once; individual failures are logged."""

        with self.log_repository.claim_retryable(self.service.max_attempts) as candidates:
            summary = RecoverySummary(candidates=len(candidates))
            self._replay(candidates, summary)

        logger.info(
            "recovery_run candidates=%s succeeded=%s failed=%s skipped=%s",
            summary.candidates,
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
        return summary

    def _replay(self, candidates, summary: RecoverySummary) -> None:
        futures = {}
        for log in candidates:
            if not self._claim(log.id):
                self._record(summary, "skipped")
                logger.info("recovery_skip_in_flight original_id=%s", log.id)
                continue
            try:
                futures[log.id] = self.service.dispatch_async(NotificationRequest.from_log(log))
            except Exception:
                self._release(log.id)
                self._record(summary, "failed")
                logger.exception("recovery_replay_not_queued original_id=%s", log.id)

        for log_id, future in futures.items():
            try:
                future.result()
                self._record(summary, "succeeded")
            except Exception as exc:
                self._record(summary, "failed")
                logger.error("recovery_replay_failed original_id=%s error=%s", log_id, exc)
            finally:
                self._release(log_id)

    async def run_forever(self) -> None:
        """Scheduled variant: one `run_once` per interval off the event loop."""

        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("recovery_loop_error error=%s", exc)
