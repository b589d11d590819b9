"""Channel sender contract and the channel -> sender registry."""

from typing import Iterable, Protocol

from notifier.common.logging import logger
from notifier.services.notification.enums import Channel
from notifier.services.notification.errors import ChannelNotSupportedError
from notifier.services.notification.schemas import NotificationRequest, NotificationResponse


class ChannelSender(Protocol):
    """One implementation per channel; performs the actual transmission.

    `send` returns a `NotificationResponse` (whose `details` carry a `provider`
    key on success) or raises a `ProviderError`.
    """

    channel: Channel

    def supports(self, channel: Channel) -> bool: ...

    def send(self, request: NotificationRequest) -> NotificationResponse: ...


class StrategyRegistry:
    """Immutable channel -> sender map built once at startup."""

    def __init__(self, senders: Iterable[ChannelSender]) -> None:
        registry: dict[Channel, ChannelSender] = {}
        for sender in senders:
            if not sender.supports(sender.channel):
                raise ValueError(f"{type(sender).__name__} does not support its own channel {sender.channel}")
            if sender.channel in registry:
                raise ValueError(f"duplicate sender for channel {sender.channel.value}")
            registry[sender.channel] = sender
        self._senders = registry
        logger.info("strategy_registry channels=%s", sorted(channel.value for channel in registry))

    def resolve(self, channel: Channel | str) -> ChannelSender:
        try:
            return self._senders[Channel(channel)]
        except (KeyError, ValueError) as exc:
            name = channel.value if isinstance(channel, Channel) else str(channel)
            raise ChannelNotSupportedError(name) from exc

    def channels(self) -> list[Channel]:
        return list(self._senders)

    def __contains__(self, channel: object) -> bool:
        return channel in self._senders
