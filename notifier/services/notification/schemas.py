"""API and service-level request/response schemas."""

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from notifier.services.notification.enums import Channel, NotificationType, Priority


METADATA_KEY_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRequest(BaseModel):
    """One outbound notification. Immutable once constructed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    channel: Channel
    type: NotificationType = NotificationType.TRANSACTIONAL
    recipient: str = Field(min_length=1, max_length=500)
    subject: str | None = Field(default=None, max_length=255)
    message: str = Field(min_length=1, max_length=5000)
    priority: Priority = Priority.MEDIUM
    metadata: dict[str, str] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    async_: bool = Field(default=True, alias="async")

    @field_validator("recipient", "message")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("recipient")
    @classmethod
    def strip_recipient(cls, value: str) -> str:
        return value.strip()

    @field_validator("metadata")
    @classmethod
    def metadata_shape(cls, value: dict[str, str]) -> dict[str, str]:
        for key, item in value.items():
            if not METADATA_KEY_RE.match(key):
                raise ValueError(f"metadata key '{key}' must be alphanumeric with underscores")
            if not item.strip():
                raise ValueError(f"metadata value for '{key}' must not be blank")
        return value

    @classmethod
    def from_log(cls, log) -> "NotificationRequest":
        """Rebuild a request from a stored log row for resend/replay."""

        return cls(
            channel=log.channel,
            type=log.type,
            recipient=log.recipient,
            subject=log.subject,
            message=log.message,
            priority=log.priority,
            metadata=dict(log.meta or {}),
            async_=False,
        )


class NotificationResponse(BaseModel):
    """Outcome of a send, returned by senders and by the dispatch API."""

    success: bool
    message: str
    notification_id: str | None = None
    provider_message_id: str | None = None
    timestamp: datetime = Field(default_factory=_now)
    details: dict[str, Any] = Field(default_factory=dict)


class NotificationLogOut(BaseModel):
    """Read model for one `notification_logs` row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    channel: Channel
    type: NotificationType
    recipient: str
    subject: str | None
    message: str
    status: str
    provider: str | None
    provider_message_id: str | None
    error_message: str | None
    priority: Priority
    retry_count: int
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime
    updated_at: datetime
    sent_at: datetime | None


class NotificationLogPage(BaseModel):
    items: list[NotificationLogOut]
    total: int
    page: int
    size: int


class InAppNotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    priority: Priority
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    is_read: bool
    created_at: datetime
    read_at: datetime | None


class RecipientStats(BaseModel):
    recipient: str
    total: int
    by_type: dict[NotificationType, int]


class ErrorResponse(BaseModel):
    """Body of every non-2xx API answer."""

    timestamp: datetime = Field(default_factory=_now)
    status: int
    error: str
    code: str
    message: str
    path: str
    detail: Any = None
