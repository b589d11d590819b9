"""Real-time push to live in-app connections over Redis pub/sub.

A websocket gateway subscribes to `notifications:user:<user_id>` and forwards
messages to the user's open sockets. Publishing is fire-and-forget: failures
are logged and never reach the dispatch path.
"""

import json
from datetime import datetime, timezone
from typing import Protocol

import redis

from notifier.common.logging import logger


def user_channel(user_id: str) -> str:
    return f"notifications:user:{user_id}"


class RealtimePublisher(Protocol):
    def send_to_user(self, user_id: str, notification: dict) -> None: ...

    def send_unread_count(self, user_id: str, unread_count: int) -> None: ...


class RedisRealtimePublisher:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 2.0) -> "RedisRealtimePublisher":
        """Client whose publishes block a dispatch thread for at most `timeout_seconds`."""

        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def _publish(self, user_id: str, message: dict) -> None:
        message["timestamp"] = datetime.now(timezone.utc).isoformat()
        try:
            self.client.publish(user_channel(user_id), json.dumps(message, default=str))
        except Exception as exc:
            logger.warning("realtime_publish_failed user_id=%s type=%s error=%s", user_id, message["type"], exc)

    def send_to_user(self, user_id: str, notification: dict) -> None:
        self._publish(user_id, {"type": "NEW_NOTIFICATION", "notification": notification})

    def send_unread_count(self, user_id: str, unread_count: int) -> None:
        self._publish(user_id, {"type": "UNREAD_COUNT", "userId": user_id, "unreadCount": unread_count})
