"""Dispatch orchestration: admission, retry lifecycle, resend and queries."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import ScriptedSender, VALID_RECIPIENTS, failed_response, make_request, ok_response

from notifier.services.notification.enums import Channel, NotificationStatus, NotificationType
from notifier.services.notification.errors import (
    ChannelNotSupportedError,
    NotificationNotFoundError,
    NotificationValidationError,
    ProviderConfigurationError,
    ProviderError,
    RetryExhaustedError,
)


INVALID_RECIPIENTS = {
    Channel.EMAIL: "not-an-email",
    Channel.SMS: "4155550123",
    Channel.WHATSAPP: "family@g.com",
    Channel.PUSH: "short-token",
    Channel.IN_APP: "user 42",
}


def all_channel_senders():
    return [ScriptedSender(channel) for channel in Channel]


@pytest.mark.parametrize("channel", list(Channel))
def test_malformed_recipient_is_rejected_without_a_log_row(make_service, log_repository, channel):
    service = make_service(*all_channel_senders())
    before = log_repository.query()[1]

    with pytest.raises(NotificationValidationError) as excinfo:
        service.dispatch(make_request(channel, recipient=INVALID_RECIPIENTS[channel]))

    assert excinfo.value.field == "recipient"
    assert log_repository.query()[1] == before == 0


def test_unregistered_channel_is_rejected_without_a_log_row(make_service, log_repository):
    service = make_service(ScriptedSender(Channel.EMAIL))

    with pytest.raises(ChannelNotSupportedError):
        service.dispatch(make_request(Channel.SMS))

    assert log_repository.count() == 0


def test_first_attempt_success(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL, default=ok_response(provider="sendgrid", message_id="sg-1"))
    service = make_service(sender)

    response = service.dispatch(make_request())

    assert response.success
    assert response.notification_id is not None
    log = log_repository.get(response.notification_id)
    assert log.status == NotificationStatus.SENT.value
    assert log.retry_count == 1
    assert log.provider == "sendgrid"
    assert log.provider_message_id == "sg-1"
    assert log.sent_at is not None
    assert log.meta == {"order_id": "1001"}
    assert len(sender.calls) == 1


def test_succeeds_on_third_attempt_after_retrying(make_service, log_repository):
    sender = ScriptedSender(
        Channel.EMAIL,
        outcomes=[ProviderError("timeout", provider="fake"), failed_response()],
    )
    service = make_service(sender, max_attempts=3)

    response = service.dispatch(make_request())

    assert log_repository.count() == 1
    log = log_repository.get(response.notification_id)
    assert log.status == NotificationStatus.SENT.value
    assert log.retry_count == 3
    transitions = [(status, retry_count) for log_id, status, retry_count in log_repository.transitions if log_id == log.id]
    assert transitions == [("RETRYING", 2), ("RETRYING", 3), ("SENT", 3)]
    assert len(sender.calls) == 3


def test_exhausted_retries_fail_the_row(make_service, log_repository):
    sender = ScriptedSender(Channel.SMS, default=failed_response("carrier rejected"))
    service = make_service(sender, max_attempts=3)

    with pytest.raises(RetryExhaustedError) as excinfo:
        service.dispatch(make_request(Channel.SMS))

    assert excinfo.value.max_attempts == 3
    assert excinfo.value.code == "RETRY_EXHAUSTED"
    rows, total = log_repository.query()
    assert total == 1
    assert rows[0].id == excinfo.value.notification_id
    assert rows[0].status == NotificationStatus.FAILED.value
    assert rows[0].retry_count == 3
    assert "carrier rejected" in rows[0].error_message
    assert rows[0].sent_at is None


def test_non_retryable_error_surfaces_after_one_attempt(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL, default=ProviderConfigurationError("missing credentials"))
    service = make_service(sender)

    with pytest.raises(ProviderConfigurationError):
        service.dispatch(make_request())

    assert len(sender.calls) == 1
    log = log_repository.query()[0][0]
    assert log.status == NotificationStatus.FAILED.value
    assert log.retry_count == 1
    assert log.error_message == "missing credentials"


def test_unanticipated_error_is_surfaced_after_exhaustion(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL, default=RuntimeError("socket exploded"))
    service = make_service(sender)

    with pytest.raises(RuntimeError, match="socket exploded"):
        service.dispatch(make_request())

    assert len(sender.calls) == 3
    log = log_repository.query()[0][0]
    assert log.status == NotificationStatus.FAILED.value
    assert log.retry_count == 3


def test_resend_creates_a_new_row_and_leaves_the_original(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL, outcomes=[failed_response()] * 3)
    service = make_service(sender)
    with pytest.raises(RetryExhaustedError) as excinfo:
        service.dispatch(make_request(subject="Invoice", message="Invoice #7 is due"))
    original_id = excinfo.value.notification_id
    original = log_repository.get(original_id)

    assert service.resend(original_id) is True

    rows, total = log_repository.query()
    assert total == 2
    fresh = next(row for row in rows if row.id != original_id)
    assert fresh.status == NotificationStatus.SENT.value
    assert (fresh.channel, fresh.recipient, fresh.subject, fresh.message) == (
        original.channel,
        original.recipient,
        original.subject,
        original.message,
    )
    unchanged = log_repository.get(original_id)
    assert unchanged.status == NotificationStatus.FAILED.value
    assert unchanged.retry_count == original.retry_count
    assert unchanged.updated_at == original.updated_at


def test_resend_reports_failure_without_raising(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL, default=failed_response())
    service = make_service(sender, max_attempts=1)
    with pytest.raises(RetryExhaustedError) as excinfo:
        service.dispatch(make_request())

    assert service.resend(excinfo.value.notification_id) is False
    assert log_repository.count() == 2


def test_resend_of_unknown_id(make_service):
    service = make_service(ScriptedSender(Channel.EMAIL))
    with pytest.raises(NotificationNotFoundError):
        service.resend("does-not-exist")


def test_dispatch_async_returns_the_response(make_service, log_repository):
    service = make_service(ScriptedSender(Channel.EMAIL))
    future = service.dispatch_async(make_request())
    response = future.result(timeout=10)
    assert response.success
    assert log_repository.get(response.notification_id).status == NotificationStatus.SENT.value


def test_concurrent_dispatches_each_get_their_own_row(make_service, log_repository):
    service = make_service(ScriptedSender(Channel.EMAIL), max_workers=10, queue_capacity=20)
    futures = [
        service.dispatch_async(make_request(recipient=f"user{i}@example.com"))
        for i in range(100)
    ]
    responses = [future.result(timeout=60) for future in futures]

    ids = {response.notification_id for response in responses}
    assert len(ids) == 100
    rows, total = log_repository.query(size=100)
    assert total == 100
    assert {row.id for row in rows} == ids
    assert {row.recipient for row in rows} == {f"user{i}@example.com" for i in range(100)}
    assert all(row.status == NotificationStatus.SENT.value for row in rows)


def test_batch_counts_admitted_and_rejected(make_service, log_repository):
    service = make_service(ScriptedSender(Channel.EMAIL))
    requests = [
        make_request(recipient="a@example.com"),
        make_request(recipient="broken"),
        make_request(Channel.SMS),
        make_request(recipient="b@example.com"),
    ]

    response = service.dispatch_batch(requests)
    service.executor.shutdown(wait=True)

    assert response.success is False
    assert response.details == {"successCount": 2, "failureCount": 2, "totalCount": 4}
    assert log_repository.count() == 2


def test_in_app_delivery_feeds_stats(make_service, stats):
    service = make_service(ScriptedSender(Channel.IN_APP))
    service.dispatch(make_request(Channel.IN_APP, type=NotificationType.ALERT))
    service.dispatch(make_request(Channel.IN_APP, type=NotificationType.ALERT))
    service.dispatch(make_request(Channel.IN_APP, type=NotificationType.SYSTEM))
    stats.shutdown(wait=True)

    recipient = VALID_RECIPIENTS[Channel.IN_APP]
    assert stats.total(recipient) == 3
    assert stats.by_type(recipient) == {NotificationType.ALERT: 2, NotificationType.SYSTEM: 1}


def test_other_channels_do_not_feed_stats(make_service, stats):
    service = make_service(ScriptedSender(Channel.EMAIL))
    service.dispatch(make_request())
    stats.shutdown(wait=True)
    assert stats.total(VALID_RECIPIENTS[Channel.EMAIL]) == 0


def test_history_filters_and_pages(make_service):
    service = make_service(ScriptedSender(Channel.EMAIL), ScriptedSender(Channel.SMS))
    for i in range(5):
        service.dispatch(make_request(recipient="alice@example.com", message=f"email {i}"))
    service.dispatch(make_request(recipient="bob@example.com"))
    service.dispatch(make_request(Channel.SMS))

    rows, total = service.get_history(recipient="alice@example.com", page=0, size=2)
    assert total == 5
    assert [row.message for row in rows] == ["email 4", "email 3"]
    last_page, _ = service.get_history(recipient="alice@example.com", page=2, size=2)
    assert [row.message for row in last_page] == ["email 0"]

    sms_rows, sms_total = service.get_history(channel=Channel.SMS)
    assert sms_total == 1 and sms_rows[0].channel == "SMS"

    now = datetime.now(timezone.utc)
    _, windowed = service.get_history(start=now - timedelta(hours=1), end=now + timedelta(hours=1))
    assert windowed == 7
    _, future_only = service.get_history(start=now + timedelta(hours=1))
    assert future_only == 0


def test_history_accepts_mixed_naive_and_aware_bounds(make_service):
    service = make_service(ScriptedSender(Channel.EMAIL))
    service.dispatch(make_request())

    _, total = service.get_history(
        start=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end=datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1),
    )
    assert total == 1

    with pytest.raises(NotificationValidationError):
        service.get_history(start=datetime(2030, 1, 1), end=datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_non_utc_bounds_are_compared_in_utc(make_service):
    service = make_service(ScriptedSender(Channel.EMAIL))
    service.dispatch(make_request())
    now = datetime.now(timezone.utc)
    ahead = timezone(timedelta(hours=5))

    _, total = service.get_history(start=(now - timedelta(minutes=5)).astimezone(ahead))
    assert total == 1
    _, later = service.get_history(start=(now + timedelta(minutes=5)).astimezone(ahead))
    assert later == 0


def test_padded_recipient_is_stored_and_sent_stripped(make_service, log_repository):
    sender = ScriptedSender(Channel.EMAIL)
    service = make_service(sender)

    response = service.dispatch(make_request(recipient="  alice@example.com "))

    assert sender.calls[0].recipient == "alice@example.com"
    assert log_repository.get(response.notification_id).recipient == "alice@example.com"
    rows, total = service.get_history(recipient="alice@example.com")
    assert total == 1
    assert rows[0].id == response.notification_id


def test_history_reads_are_repeatable(make_service):
    service = make_service(ScriptedSender(Channel.EMAIL))
    for i in range(3):
        service.dispatch(make_request(recipient=f"r{i}@example.com"))

    first_rows, first_total = service.get_history(size=10)
    second_rows, second_total = service.get_history(size=10)
    assert first_total == second_total == 3
    assert [(r.id, r.status, r.updated_at) for r in first_rows] == [(r.id, r.status, r.updated_at) for r in second_rows]


@pytest.mark.parametrize(
    "kwargs,field",
    [
        ({"page": -1}, "page"),
        ({"size": 0}, "size"),
        ({"size": 101}, "size"),
        (
            {"start": datetime(2024, 2, 1, tzinfo=timezone.utc), "end": datetime(2024, 1, 1, tzinfo=timezone.utc)},
            "start_date",
        ),
    ],
)
def test_history_rejects_bad_arguments(make_service, kwargs, field):
    service = make_service(ScriptedSender(Channel.EMAIL))
    with pytest.raises(NotificationValidationError) as excinfo:
        service.get_history(**kwargs)
    assert excinfo.value.field == field


def test_get_failed_lists_rows_with_attempts_to_spare(make_service, log_repository):
    service = make_service(
        ScriptedSender(Channel.EMAIL, default=ProviderConfigurationError("bad key")),
        ScriptedSender(Channel.SMS, default=failed_response()),
    )
    with pytest.raises(ProviderConfigurationError):
        service.dispatch(make_request())
    with pytest.raises(RetryExhaustedError):
        service.dispatch(make_request(Channel.SMS))

    failed = service.get_failed()
    assert [row.channel for row in failed] == ["EMAIL"]
    assert failed[0].retry_count == 1
