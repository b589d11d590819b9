"""Dispatch orchestration.

`dispatch` validates the recipient, resolves the channel sender, writes a
PENDING log row and drives the retry policy around the sender. The row is
always finalized (SENT or FAILED) before control returns to the caller.
"""

import contextvars
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Iterable

from notifier.common.executor import CallerRunsExecutor
from notifier.common.logging import logger, notification_id_ctx
from notifier.common.metrics import (
    notification_dispatch_seconds,
    notification_retries_total,
    notifications_failed_total,
    notifications_rejected_total,
    notifications_requested_total,
    notifications_sent_total,
)
from notifier.common.retry import RetryExhausted, RetryPolicy
from notifier.common.tracing import tracer
from notifier.services.notification.enums import Channel, NotificationStatus
from notifier.services.notification.errors import (
    NotificationError,
    NotificationValidationError,
    RetryExhaustedError,
    SendFailedError,
)
from notifier.services.notification.models import NotificationLog
from notifier.services.notification.repository import NotificationLogRepository
from notifier.services.notification.schemas import NotificationRequest, NotificationResponse
from notifier.services.notification.stats import StatsAggregator
from notifier.services.notification.strategies import ChannelSender, StrategyRegistry
from notifier.services.notification.validation import validate_recipient


MAX_PAGE_SIZE = 100


def _as_utc(value: datetime | None) -> datetime | None:
    """Normalize a query bound to UTC; naive bounds are taken to be UTC already."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NotificationService:
    """Owns the notification log lifecycle around each channel send."""

    def __init__(
        self,
        log_repository: NotificationLogRepository,
        registry: StrategyRegistry,
        retry_policy: RetryPolicy,
        executor: CallerRunsExecutor,
        stats: StatsAggregator | None = None,
        service_name: str = "notification",
    ) -> None:
        self.log_repository = log_repository
        self.registry = registry
        self.retry_policy = retry_policy
        self.executor = executor
        self.stats = stats
        self.service_name = service_name

    @property
    def max_attempts(self) -> int:
        return self.retry_policy.max_attempts

    def admit(self, request: NotificationRequest) -> ChannelSender:
        """Validation and sender lookup; nothing is persisted on failure."""

        try:
            validate_recipient(request.channel, request.recipient)
            return self.registry.resolve(request.channel)
        except NotificationError as exc:
            notifications_rejected_total.labels(
                service=self.service_name,
                channel=request.channel.value,
                error_code=exc.code,
            ).inc()
            logger.warning(
                "dispatch_rejected channel=%s code=%s error=%s",
                request.channel.value,
                exc.code,
                exc.message,
            )
            raise

    def dispatch(self, request: NotificationRequest) -> NotificationResponse:
        """Send one notification synchronously, retrying transient failures."""

        sender = self.admit(request)
        log = self.log_repository.create(request)
        token = notification_id_ctx.set(log.id)
        channel = request.channel.value
        notifications_requested_total.labels(service=self.service_name, channel=channel).inc()
        logger.info("dispatch_started channel=%s type=%s", channel, request.type.value)
        try:
            with tracer.start_as_current_span("notification.dispatch") as span:
                span.set_attribute("notification.id", log.id)
                span.set_attribute("notification.channel", channel)
                with notification_dispatch_seconds.labels(service=self.service_name, channel=channel).time():
                    return self._deliver(log, request, sender)
        finally:
            notification_id_ctx.reset(token)

    def _deliver(self, log: NotificationLog, request: NotificationRequest, sender: ChannelSender) -> NotificationResponse:
        attempts = 0

        def attempt() -> NotificationResponse:
            nonlocal attempts
            attempts += 1
            response = sender.send(request)
            if not response.success:
                raise SendFailedError(
                    response.message or "provider reported failure",
                    {"provider": response.details.get("provider")},
                )
            return response

        def mark_retrying(attempt_number: int) -> None:
            notification_retries_total.labels(service=self.service_name, channel=request.channel.value).inc()
            self.log_repository.update_status(log.id, NotificationStatus.RETRYING, retry_count=attempt_number)

        try:
            response = self.retry_policy.execute(attempt, before_retry=mark_retrying)
        except RetryExhausted as exc:
            last_error = exc.last_error
            self._finalize_failed(log, request, attempts, last_error)
            if last_error is None or isinstance(last_error, NotificationError):
                raise RetryExhaustedError(
                    f"Failed to send notification after {exc.max_attempts} attempts: {last_error}",
                    max_attempts=exc.max_attempts,
                    notification_id=log.id,
                ) from last_error
            # Never matched a known provider error: surface the original cause.
            raise last_error
        except Exception as exc:
            self._finalize_failed(log, request, attempts, exc)
            raise

        provider = response.details.get("provider") or type(sender).__name__
        self.log_repository.update_status(
            log.id,
            NotificationStatus.SENT,
            provider=provider,
            provider_message_id=response.provider_message_id,
            retry_count=attempts,
        )
        notifications_sent_total.labels(
            service=self.service_name,
            channel=request.channel.value,
            provider=provider,
        ).inc()
        logger.info("dispatch_sent provider=%s attempts=%s", provider, attempts)
        if request.channel is Channel.IN_APP and self.stats is not None:
            self.stats.record_async(request.recipient.strip(), request.type)
        return response.model_copy(update={"notification_id": log.id})

    def _finalize_failed(
        self,
        log: NotificationLog,
        request: NotificationRequest,
        attempts: int,
        error: Exception | None,
    ) -> None:
        code = error.code if isinstance(error, NotificationError) else type(error).__name__
        notifications_failed_total.labels(
            service=self.service_name,
            channel=request.channel.value,
            error_code=code,
        ).inc()
        logger.error("dispatch_failed attempts=%s code=%s error=%s", attempts, code, error)
        try:
            self.log_repository.update_status(
                log.id,
                NotificationStatus.FAILED,
                error_message=str(error) if error is not None else "unknown error",
                retry_count=attempts,
            )
        except Exception:
            logger.exception("failed to mark notification FAILED id=%s", log.id)

    def dispatch_async(self, request: NotificationRequest) -> Future:
        """Queue `dispatch` on the worker pool and return its future."""

        context = contextvars.copy_context()
        return self.executor.submit(context.run, self.dispatch, request)

    def dispatch_batch(self, requests: Iterable[NotificationRequest]) -> NotificationResponse:
        """Queue every admissible request; report aggregate counts."""

        success_count = 0
        failure_count = 0
        for request in requests:
            try:
                self.admit(request)
                self.dispatch_async(request)
                success_count += 1
            except Exception as exc:
                failure_count += 1
                logger.error("batch_item_rejected recipient=%s error=%s", request.recipient, exc)
        total = success_count + failure_count
        logger.info("batch_processed total=%s success=%s failed=%s", total, success_count, failure_count)
        return NotificationResponse(
            success=failure_count == 0,
            message=f"Batch processing completed. Success: {success_count}, Failed: {failure_count}",
            details={"successCount": success_count, "failureCount": failure_count, "totalCount": total},
        )

    def get_history(
        self,
        recipient: str | None = None,
        channel: Channel | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 0,
        size: int = 20,
    ) -> tuple[list[NotificationLog], int]:
        if page < 0:
            raise NotificationValidationError("page must be >= 0", field="page")
        if not 1 <= size <= MAX_PAGE_SIZE:
            raise NotificationValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}", field="size")
        start, end = _as_utc(start), _as_utc(end)
        if start is not None and end is not None and start > end:
            raise NotificationValidationError("start_date must not be after end_date", field="start_date")
        return self.log_repository.query(recipient, channel, start, end, page, size)

    def get_notification(self, log_id: str) -> NotificationLog:
        return self.log_repository.get(log_id)

    def resend(self, log_id: str) -> bool:
        """Redispatch a stored notification as a brand-new log row.

        The original row is left untouched.
        """

        original = self.log_repository.get(log_id)
        request = NotificationRequest.from_log(original)
        try:
            response = self.dispatch(request)
        except NotificationError as exc:
            logger.warning("resend_failed original_id=%s code=%s error=%s", log_id, exc.code, exc.message)
            return False
        except Exception:
            logger.exception("resend_failed original_id=%s", log_id)
            return False
        logger.info("resend_succeeded original_id=%s new_id=%s", log_id, response.notification_id)
        return response.success

    def get_failed(self) -> list[NotificationLog]:
        """Rows eligible for automatic retry (FAILED with attempts to spare)."""

        return self.log_repository.find_by_status_and_retry_below(NotificationStatus.FAILED, self.max_attempts)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
        if self.stats is not None:
            self.stats.shutdown(wait=wait)
