"""Notification log store backed by SQLAlchemy.

Every status change is a single guarded `UPDATE ... WHERE id = ? AND status IN
(allowed sources)`, so concurrent writers can never move a row backwards or
out of a terminal state.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from sqlalchemy import Select, func, select, update

from notifier.common.state_machine import allowed_sources
from notifier.services.notification.enums import NotificationStatus
from notifier.services.notification.errors import InvalidTransitionError, NotificationNotFoundError
from notifier.services.notification.models import InAppNotification, NotificationLog, utcnow


class NotificationLogRepository:
    """Create/update/query access to `notification_logs`."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(self, request) -> NotificationLog:
        """Persist a new PENDING row for `request` with retry_count 0."""

        now = utcnow()
        log = NotificationLog(
            channel=request.channel.value,
            type=request.type.value,
            recipient=request.recipient,
            subject=request.subject,
            message=request.message,
            status=NotificationStatus.PENDING.value,
            priority=request.priority.value,
            retry_count=0,
            meta=dict(request.metadata),
            created_at=now,
            updated_at=now,
        )
        with self.session_factory() as db:
            db.add(log)
            db.commit()
        return log

    def update_status(self, log_id: str, status: NotificationStatus, **values) -> None:
        """Move one row to `status`, writing `values` alongside.

        `sent_at` is only written when it is still unset.
        """

        sources = allowed_sources(status.value)
        now = utcnow()
        values["status"] = status.value
        values["updated_at"] = now
        if status is NotificationStatus.SENT:
            values["sent_at"] = func.coalesce(NotificationLog.sent_at, now)
        with self.session_factory() as db:
            result = db.execute(
                update(NotificationLog)
                .where(NotificationLog.id == log_id, NotificationLog.status.in_(sources))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            current = self.find_by_id(log_id)
            if current is None:
                raise NotificationNotFoundError(log_id)
            raise InvalidTransitionError(
                f"Invalid transition for notification {log_id}: {current.status} -> {status.value}",
                {"id": log_id, "from": current.status, "to": status.value},
            )

    def find_by_id(self, log_id: str) -> NotificationLog | None:
        with self.session_factory() as db:
            return db.get(NotificationLog, log_id)

    def get(self, log_id: str) -> NotificationLog:
        log = self.find_by_id(log_id)
        if log is None:
            raise NotificationNotFoundError(log_id)
        return log

    def _filtered(self, stmt, recipient, channel, start, end):
        if recipient:
            stmt = stmt.where(NotificationLog.recipient == recipient)
        if channel is not None:
            stmt = stmt.where(NotificationLog.channel == channel.value)
        if start is not None:
            stmt = stmt.where(NotificationLog.created_at >= start)
        if end is not None:
            stmt = stmt.where(NotificationLog.created_at <= end)
        return stmt

    def query(
        self,
        recipient: str | None = None,
        channel=None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 0,
        size: int = 20,
    ) -> tuple[list[NotificationLog], int]:
        """Filtered page of rows, newest first, plus the total match count."""

        with self.session_factory() as db:
            total = db.execute(
                self._filtered(select(func.count()).select_from(NotificationLog), recipient, channel, start, end)
            ).scalar_one()
            rows = (
                db.execute(
                    self._filtered(select(NotificationLog), recipient, channel, start, end)
                    .order_by(NotificationLog.created_at.desc(), NotificationLog.id)
                    .offset(page * size)
                    .limit(size)
                )
                .scalars()
                .all()
            )
        return list(rows), total

    def _status_below_stmt(self, status: NotificationStatus, max_retry: int) -> Select:
        return (
            select(NotificationLog)
            .where(NotificationLog.status == status.value, NotificationLog.retry_count < max_retry)
            .order_by(NotificationLog.created_at, NotificationLog.id)
        )

    def claim_stmt(self, max_retry: int) -> Select:
        """Recovery scan that skips rows another replica has already locked."""

        return self._status_below_stmt(NotificationStatus.FAILED, max_retry).with_for_update(skip_locked=True)

    @contextmanager
    def claim_retryable(self, max_retry: int) -> Iterator[list[NotificationLog]]:
        """Lock FAILED rows with attempts to spare for one recovery pass.

        Row locks are held until the block exits, so concurrent passes in other
        processes see disjoint candidate sets. SQLite ignores the lock clause.
        """

        with self.session_factory() as db:
            rows = db.execute(self.claim_stmt(max_retry)).scalars().all()
            yield list(rows)

    def find_by_status_and_retry_below(self, status: NotificationStatus, max_retry: int) -> list[NotificationLog]:
        with self.session_factory() as db:
            rows = db.execute(self._status_below_stmt(status, max_retry)).scalars().all()
        return list(rows)

    def count(self) -> int:
        with self.session_factory() as db:
            return db.execute(select(func.count()).select_from(NotificationLog)).scalar_one()


class InAppNotificationRepository:
    """Per-user inbox rows written by the in-app sender."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(self, user_id: str, title: str, message: str, type_: str, priority: str, meta: dict) -> InAppNotification:
        row = InAppNotification(
            user_id=user_id,
            title=title,
            message=message,
            type=type_,
            priority=priority,
            meta=meta,
            is_read=False,
            created_at=utcnow(),
        )
        with self.session_factory() as db:
            db.add(row)
            db.commit()
        return row

    def list_for_user(self, user_id: str, limit: int = 50) -> list[InAppNotification]:
        with self.session_factory() as db:
            rows = (
                db.execute(
                    select(InAppNotification)
                    .where(InAppNotification.user_id == user_id)
                    .order_by(InAppNotification.created_at.desc(), InAppNotification.id)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
        return list(rows)

    def unread_count(self, user_id: str) -> int:
        with self.session_factory() as db:
            return db.execute(
                select(func.count())
                .select_from(InAppNotification)
                .where(InAppNotification.user_id == user_id, InAppNotification.is_read.is_(False))
            ).scalar_one()

    def mark_read(self, notification_id: str) -> InAppNotification:
        """Flag one inbox row as read; reading twice keeps the first `read_at`."""

        with self.session_factory() as db:
            db.execute(
                update(InAppNotification)
                .where(InAppNotification.id == notification_id, InAppNotification.is_read.is_(False))
                .values(is_read=True, read_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            row = db.get(InAppNotification, notification_id)
        if row is None:
            raise NotificationNotFoundError(notification_id)
        return row
