"""Per-channel recipient shape checks.

Runs before any log row exists; a failure short-circuits dispatch with a
`NotificationValidationError` naming the field and channel.
"""

import re

from notifier.services.notification.enums import Channel
from notifier.services.notification.errors import NotificationValidationError


# E.164: "+" then 2-15 digits, first digit 1-9.
PHONE_RE = re.compile(r"^\+[1-9]\d{1,14}$")
WHATSAPP_GROUP_RE = re.compile(r"^[a-zA-Z0-9._-]+@g\.us$")
PUSH_TOKEN_RE = re.compile(r"^[a-zA-Z0-9:_-]{100,500}$")
IN_APP_USER_RE = re.compile(r"^[a-zA-Z0-9._-]{1,100}$")
EMAIL_RE = re.compile(
    r"^(?![.])(?!.*[.]{2})[a-zA-Z0-9!#$%&'*+/=?^_`{|}~.-]+(?<![.])"
    r"@(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)

ERROR_MESSAGES = {
    Channel.EMAIL: "'{}' is not a valid email address",
    Channel.SMS: "'{}' is not a valid phone number (E.164 expected)",
    Channel.WHATSAPP: "'{}' is not a valid WhatsApp recipient (phone number or group ID)",
    Channel.PUSH: "'{}' is not a valid push notification token",
    Channel.IN_APP: "'{}' is not a valid user identifier",
}


def is_valid_email(value: str) -> bool:
    return len(value) <= 254 and EMAIL_RE.match(value) is not None


def is_valid_phone(value: str) -> bool:
    return PHONE_RE.match(value) is not None


def is_valid_whatsapp(value: str) -> bool:
    return is_valid_phone(value) or WHATSAPP_GROUP_RE.match(value) is not None


def is_valid_push_token(value: str) -> bool:
    return PUSH_TOKEN_RE.match(value) is not None


def is_valid_in_app_user(value: str) -> bool:
    return IN_APP_USER_RE.match(value) is not None


RULES = {
    Channel.EMAIL: is_valid_email,
    Channel.SMS: is_valid_phone,
    Channel.WHATSAPP: is_valid_whatsapp,
    Channel.PUSH: is_valid_push_token,
    Channel.IN_APP: is_valid_in_app_user,
}


def validate_recipient(channel: Channel | str, recipient: str | None) -> None:
    """Raise `NotificationValidationError` unless `recipient` fits `channel`."""

    try:
        channel = Channel(channel)
    except ValueError as exc:
        raise NotificationValidationError(
            f"'{channel}' is not a known channel", field="channel", channel=str(channel)
        ) from exc
    if recipient is None or not recipient.strip():
        raise NotificationValidationError("Recipient is required", field="recipient", channel=channel.value)
    value = recipient.strip()
    if not RULES[channel](value):
        raise NotificationValidationError(
            ERROR_MESSAGES[channel].format(value), field="recipient", channel=channel.value
        )
