"""Concrete channel senders.

HTTP providers (email, SMS, push, WhatsApp) share one httpx-based sender that
differs only in the payload it posts. A channel without a configured provider
URL runs in simulation mode; a provider with `enabled=false` leaves its channel
unregistered.
"""

import re
import time
from uuid import uuid4

import httpx

from notifier.common.config import CommonSettings, ProviderSettings
from notifier.common.logging import logger, trace_id_ctx
from notifier.services.notification.enums import Channel, Priority
from notifier.services.notification.errors import ProviderConfigurationError, ProviderError
from notifier.services.notification.repository import InAppNotificationRepository
from notifier.services.notification.schemas import InAppNotificationOut, NotificationRequest, NotificationResponse
from notifier.services.notification.validation import WHATSAPP_GROUP_RE


def format_phone_number(phone: str) -> str:
    """Normalize to E.164: drop separators and turn a `00` prefix into `+`."""

    cleaned = re.sub(r"[^+0-9]", "", phone)
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]
    return cleaned


def email_payload(request: NotificationRequest, sender: str | None) -> dict:
    return {
        "to": request.recipient.strip(),
        "from": sender,
        "subject": request.subject or "",
        "text": request.message,
        "metadata": dict(request.metadata),
    }


def sms_payload(request: NotificationRequest, sender: str | None) -> dict:
    return {"to": format_phone_number(request.recipient), "from": sender, "body": request.message}


def whatsapp_payload(request: NotificationRequest, sender: str | None) -> dict:
    recipient = request.recipient.strip()
    if not WHATSAPP_GROUP_RE.match(recipient):
        recipient = format_phone_number(recipient)
    return {"to": f"whatsapp:{recipient}", "from": sender, "body": request.message}


def push_payload(request: NotificationRequest, sender: str | None) -> dict:
    # FCM-style data payloads only carry string values.
    data = {key: "null" if value is None else str(value) for key, value in request.data.items()}
    urgent = request.priority in (Priority.HIGH, Priority.URGENT)
    return {
        "token": request.recipient.strip(),
        "notification": {"title": request.subject or "Notification", "body": request.message},
        "data": data,
        "priority": "high" if urgent else "normal",
    }


PAYLOAD_BUILDERS = {
    Channel.EMAIL: email_payload,
    Channel.SMS: sms_payload,
    Channel.WHATSAPP: whatsapp_payload,
    Channel.PUSH: push_payload,
}


class HttpProviderSender:
    """Posts one JSON message per send to a provider HTTP API."""

    def __init__(self, channel: Channel, provider: ProviderSettings, client: httpx.Client | None = None) -> None:
        if channel not in PAYLOAD_BUILDERS:
            raise ProviderConfigurationError(f"no HTTP payload format for channel {channel.value}")
        if not provider.url:
            raise ProviderConfigurationError(f"provider '{provider.name}' for {channel.value} has no url")
        self.channel = channel
        self.provider = provider
        self.client = client or httpx.Client(timeout=provider.timeout_seconds)

    def supports(self, channel: Channel) -> bool:
        return channel == self.channel

    def send(self, request: NotificationRequest) -> NotificationResponse:
        name = self.provider.name
        payload = PAYLOAD_BUILDERS[self.channel](request, self.provider.sender)
        headers = {"x-correlation-id": trace_id_ctx.get() or str(uuid4())}
        if self.provider.api_key:
            headers["authorization"] = f"Bearer {self.provider.api_key}"
        try:
            resp = self.client.post(
                self.provider.url,
                json=payload,
                headers=headers,
                timeout=self.provider.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{name} timed out after {self.provider.timeout_seconds}s", provider=name) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{name} request failed: {exc}", provider=name) from exc

        if resp.status_code >= 400:
            raise ProviderError(
                f"{name} answered HTTP {resp.status_code}: {resp.text[:200]}",
                provider=name,
                status_code=resp.status_code,
            )
        try:
            body = resp.json() if resp.content else {}
        except ValueError as exc:
            raise ProviderError(f"{name} returned a non-JSON body", provider=name, status_code=resp.status_code) from exc

        if body.get("success") is False:
            return NotificationResponse(
                success=False,
                message=body.get("message") or f"{name} rejected the message",
                details={"provider": name, "status_code": resp.status_code},
            )
        message_id = body.get("id") or body.get("message_id") or body.get("sid")
        logger.info("provider_accepted channel=%s provider=%s message_id=%s", self.channel.value, name, message_id)
        return NotificationResponse(
            success=True,
            message=f"{self.channel.value} notification sent via {name}",
            provider_message_id=str(message_id) if message_id is not None else None,
            details={"provider": name, "recipient": payload.get("to") or payload.get("token"), "status_code": resp.status_code},
        )


class SimulatedSender:
    """Development stand-in used when a channel has no provider URL."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    def supports(self, channel: Channel) -> bool:
        return channel == self.channel

    def send(self, request: NotificationRequest) -> NotificationResponse:
        logger.info(
            "SIMULATION channel=%s recipient=%s length=%s",
            self.channel.value,
            request.recipient,
            len(request.message),
        )
        prefix = self.channel.value.lower().replace("_", "")
        return NotificationResponse(
            success=True,
            message=f"{self.channel.value} notification sent (simulation)",
            provider_message_id=f"{prefix}-sim-{int(time.time() * 1000)}-{uuid4().hex[:8]}",
            details={"provider": "simulated", "recipient": request.recipient},
        )


class InAppSender:
    """Stores an inbox row and pushes it to the user's live connections."""

    channel = Channel.IN_APP

    def __init__(self, repository: InAppNotificationRepository, realtime) -> None:
        self.repository = repository
        self.realtime = realtime

    def supports(self, channel: Channel) -> bool:
        return channel == Channel.IN_APP

    def send(self, request: NotificationRequest) -> NotificationResponse:
        user_id = request.recipient.strip()
        row = self.repository.create(
            user_id=user_id,
            title=request.subject or "Notification",
            message=request.message,
            type_=request.type.value,
            priority=request.priority.value,
            meta=dict(request.metadata),
        )
        self.realtime.send_to_user(user_id, InAppNotificationOut.model_validate(row).model_dump(mode="json"))
        self.realtime.send_unread_count(user_id, self.repository.unread_count(user_id))
        return NotificationResponse(
            success=True,
            message="In-app notification sent successfully",
            provider_message_id=f"inapp-{row.id}",
            details={"provider": "in-app", "userId": user_id},
        )


def build_senders(
    config: CommonSettings,
    in_app_repository: InAppNotificationRepository,
    realtime,
    http_client: httpx.Client | None = None,
) -> list:
    """Instantiate one sender per channel from provider settings."""

    senders: list = [InAppSender(in_app_repository, realtime)]
    for channel in PAYLOAD_BUILDERS:
        provider = config.providers.get(channel.value.lower())
        if provider is not None and not provider.enabled:
            logger.warning("provider disabled channel=%s provider=%s", channel.value, provider.name)
            continue
        if provider is None or not provider.url:
            logger.warning("provider not configured channel=%s; running in simulation mode", channel.value)
            senders.append(SimulatedSender(channel))
            continue
        senders.append(HttpProviderSender(channel, provider, client=http_client))
    return senders
