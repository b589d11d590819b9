"""Shared fixtures: file-backed SQLite per test and scripted channel senders."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("RECOVERY_ENABLED", "false")

import threading

import pytest

from notifier.common.db import Base, make_session_factory
from notifier.common.executor import CallerRunsExecutor
from notifier.common.retry import RetryPolicy
from notifier.services.notification import models  # noqa: F401  (registers tables)
from notifier.services.notification.enums import Channel
from notifier.services.notification.errors import is_retryable
from notifier.services.notification.repository import InAppNotificationRepository, NotificationLogRepository
from notifier.services.notification.schemas import NotificationRequest, NotificationResponse
from notifier.services.notification.service import NotificationService
from notifier.services.notification.stats import StatsAggregator
from notifier.services.notification.strategies import StrategyRegistry


VALID_RECIPIENTS = {
    Channel.EMAIL: "alice@example.com",
    Channel.SMS: "+14155550123",
    Channel.WHATSAPP: "+447700900123",
    Channel.PUSH: "f" * 40 + ":" + "A1_-" * 20,
    Channel.IN_APP: "user-42",
}


def make_request(channel: Channel = Channel.EMAIL, **overrides) -> NotificationRequest:
    values = {
        "channel": channel,
        "recipient": VALID_RECIPIENTS[channel],
        "subject": "Order shipped",
        "message": "Your order #1001 is on its way.",
        "metadata": {"order_id": "1001"},
        "async": False,
    }
    values.update(overrides)
    return NotificationRequest(**values)


def ok_response(provider: str = "fake", message_id: str = "msg-1") -> NotificationResponse:
    return NotificationResponse(
        success=True,
        message="sent",
        provider_message_id=message_id,
        details={"provider": provider},
    )


def failed_response(message: str = "provider said no") -> NotificationResponse:
    return NotificationResponse(success=False, message=message, details={"provider": "fake"})


class ScriptedSender:
    """Plays back `outcomes` in order, then keeps returning `default`.

    An outcome is either a `NotificationResponse` or an exception to raise.
    """

    def __init__(self, channel: Channel, outcomes=None, default=None, on_send=None) -> None:
        self.channel = channel
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else ok_response()
        self.on_send = on_send
        self.calls: list[NotificationRequest] = []
        self._lock = threading.Lock()

    def supports(self, channel: Channel) -> bool:
        return channel == self.channel

    def send(self, request: NotificationRequest) -> NotificationResponse:
        with self._lock:
            self.calls.append(request)
            outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if self.on_send is not None:
            self.on_send(request)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingLogRepository(NotificationLogRepository):
    """Log store that remembers every status transition it applied."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.transitions: list[tuple[str, str, int | None]] = []
        self._lock = threading.Lock()

    def update_status(self, log_id, status, **values):
        super().update_status(log_id, status, **values)
        with self._lock:
            self.transitions.append((log_id, status.value, values.get("retry_count")))


@pytest.fixture
def session_factory(tmp_path):
    factory = make_session_factory(
        f"sqlite+pysqlite:///{tmp_path / 'notifier.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def log_repository(session_factory):
    return RecordingLogRepository(session_factory)


@pytest.fixture
def in_app_repository(session_factory):
    return InAppNotificationRepository(session_factory)


@pytest.fixture
def stats():
    aggregator = StatsAggregator()
    yield aggregator
    aggregator.shutdown()


@pytest.fixture
def make_service(log_repository, stats):
    """Factory: build a NotificationService over the given senders."""

    created = []

    def factory(*senders, max_attempts: int = 3, max_workers: int = 10, queue_capacity: int = 100):
        policy = RetryPolicy(
            max_attempts=max_attempts,
            initial_delay=0.0,
            max_delay=0.0,
            retry_on=is_retryable,
        )
        executor = CallerRunsExecutor(max_workers=max_workers, queue_capacity=queue_capacity)
        service = NotificationService(log_repository, StrategyRegistry(senders), policy, executor, stats=stats)
        created.append(service)
        return service

    yield factory
    for service in created:
        service.executor.shutdown(wait=True)
