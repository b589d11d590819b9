"""Notification error taxonomy.

Every error carries a stable machine-readable `code` and the HTTP status the
API answers with. Only `SendFailedError` and `ProviderError` are retried;
unknown exceptions raised by a sender are retried as well.
"""

from typing import Any


class NotificationError(Exception):
    code = "NOTIFICATION_ERROR"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotificationValidationError(NotificationError):
    """Recipient malformed for its channel, or a required field is missing."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: str, channel: str | None = None) -> None:
        super().__init__(message, {"field": field, "channel": channel})
        self.field = field
        self.channel = channel


class ChannelNotSupportedError(NotificationError):
    code = "CHANNEL_NOT_SUPPORTED"
    http_status = 400

    def __init__(self, channel: str) -> None:
        super().__init__(f"No sender registered for channel '{channel}'", {"channel": channel})
        self.channel = channel


class SendFailedError(NotificationError):
    """The provider answered but reported `success=false`."""

    code = "SEND_FAILED"
    http_status = 502
    retryable = True


class ProviderError(NotificationError):
    """Transport, timeout or HTTP-level failure talking to a provider."""

    code = "PROVIDER_ERROR"
    http_status = 502
    retryable = True

    def __init__(self, message: str, provider: str, status_code: int | None = None) -> None:
        super().__init__(message, {"provider": provider, "status_code": status_code})
        self.provider = provider
        self.status_code = status_code


class ProviderConfigurationError(NotificationError):
    code = "PROVIDER_CONFIGURATION_ERROR"
    http_status = 500


class RetryExhaustedError(NotificationError):
    code = "RETRY_EXHAUSTED"
    http_status = 503

    def __init__(self, message: str, max_attempts: int, notification_id: str | None = None) -> None:
        super().__init__(message, {"maxAttempts": max_attempts, "notificationId": notification_id})
        self.max_attempts = max_attempts
        self.notification_id = notification_id


class NotificationNotFoundError(NotificationError):
    code = "NOTIFICATION_NOT_FOUND"
    http_status = 404

    def __init__(self, notification_id: str) -> None:
        super().__init__(f"Notification '{notification_id}' not found", {"id": notification_id})
        self.notification_id = notification_id


class InvalidTransitionError(NotificationError):
    """A log row update would break the status state machine."""

    code = "INVALID_TRANSITION"
    http_status = 409


def is_retryable(exc: Exception) -> bool:
    """Retry predicate for the dispatch pipeline."""

    if isinstance(exc, NotificationError):
        return exc.retryable
    return True
