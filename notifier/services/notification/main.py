"""Notification service HTTP surface and process wiring."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from notifier.common.config import CommonSettings, settings
from notifier.common.db import SessionLocal
from notifier.common.executor import CallerRunsExecutor
from notifier.common.logging import configure_logging, logger, trace_id_ctx
from notifier.common.metrics import metrics_response, notification_caller_runs_total
from notifier.common.retry import RetryPolicy
from notifier.common.startup import log_startup_config
from notifier.common.tracing import instrument_app, setup_tracing
from notifier.services.notification.enums import Channel
from notifier.services.notification.errors import NotificationError, is_retryable
from notifier.services.notification.providers import build_senders
from notifier.services.notification.realtime import RedisRealtimePublisher
from notifier.services.notification.recovery import RecoveryLoop
from notifier.services.notification.repository import InAppNotificationRepository, NotificationLogRepository
from notifier.services.notification.schemas import (
    ErrorResponse,
    InAppNotificationOut,
    NotificationLogOut,
    NotificationLogPage,
    NotificationRequest,
    NotificationResponse,
    RecipientStats,
)
from notifier.services.notification.service import NotificationService
from notifier.services.notification.stats import StatsAggregator
from notifier.services.notification.strategies import StrategyRegistry


@dataclass
class Components:
    service: NotificationService
    recovery: RecoveryLoop
    in_app: InAppNotificationRepository
    stats: StatsAggregator


def build_components(config: CommonSettings, session_factory, realtime=None, http_client=None) -> Components:
    """Wire repositories, senders, retry policy and worker pool once per process."""

    log_repository = NotificationLogRepository(session_factory)
    in_app = InAppNotificationRepository(session_factory)
    stats = StatsAggregator(config.service_name)
    realtime = realtime or RedisRealtimePublisher.from_url(config.redis_url, config.redis_timeout_seconds)
    registry = StrategyRegistry(build_senders(config, in_app, realtime, http_client=http_client))
    executor = CallerRunsExecutor(
        max_workers=config.dispatch_max_workers,
        queue_capacity=config.dispatch_queue_capacity,
        on_caller_runs=notification_caller_runs_total.labels(service=config.service_name).inc,
    )
    service = NotificationService(
        log_repository,
        registry,
        RetryPolicy.from_settings(config, retry_on=is_retryable),
        executor,
        stats=stats,
        service_name=config.service_name,
    )
    recovery = RecoveryLoop(service, log_repository, interval_seconds=config.recovery_interval_seconds)
    return Components(service=service, recovery=recovery, in_app=in_app, stats=stats)


def get_components(request: Request) -> Components:
    return request.app.state.components


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


router = APIRouter(prefix="/api/v1/notifications")


@router.post("/send", response_model=NotificationResponse, dependencies=[Depends(enforce_api_key)])
def send_notification(req: NotificationRequest, response: Response, components: Components = Depends(get_components)):
    """Dispatch one notification; `async=true` queues it and answers 202."""

    service = components.service
    if req.async_:
        service.admit(req)
        service.dispatch_async(req)
        response.status_code = 202
        return NotificationResponse(success=True, message="Notification queued for delivery")
    return service.dispatch(req)


@router.post("/batch", response_model=NotificationResponse, status_code=202, dependencies=[Depends(enforce_api_key)])
def send_batch(reqs: list[NotificationRequest], components: Components = Depends(get_components)):
    """Queue many notifications; per-item failures only show up in the counts."""

    logger.info("batch_received size=%s", len(reqs))
    return components.service.dispatch_batch(reqs)


@router.get("/history", response_model=NotificationLogPage)
def get_history(
    recipient: str | None = None,
    channel: Channel | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 0,
    size: int = 20,
    components: Components = Depends(get_components),
):
    rows, total = components.service.get_history(recipient, channel, start_date, end_date, page, size)
    return NotificationLogPage(
        items=[NotificationLogOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        size=size,
    )


@router.get("/failed", response_model=list[NotificationLogOut])
def get_failed(components: Components = Depends(get_components)):
    """FAILED rows that the recovery loop would replay."""

    return [NotificationLogOut.model_validate(row) for row in components.service.get_failed()]


@router.post("/retry-failed", response_model=NotificationResponse, dependencies=[Depends(enforce_api_key)])
def retry_failed(components: Components = Depends(get_components)):
    """Run the recovery loop now, in addition to its schedule."""

    summary = components.recovery.run_once()
    return NotificationResponse(
        success=True,
        message="Retry process completed for failed notifications",
        details={
            "candidates": summary.candidates,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped,
        },
    )


@router.get("/stats/{recipient}", response_model=RecipientStats)
def get_stats(recipient: str, components: Components = Depends(get_components)):
    stats = components.stats
    return RecipientStats(recipient=recipient, total=stats.total(recipient), by_type=stats.by_type(recipient))


@router.get("/in-app/{user_id}", response_model=list[InAppNotificationOut])
def list_in_app(user_id: str, limit: int = 50, components: Components = Depends(get_components)):
    return [InAppNotificationOut.model_validate(row) for row in components.in_app.list_for_user(user_id, limit)]


@router.get("/in-app/{user_id}/unread-count")
def unread_count(user_id: str, components: Components = Depends(get_components)):
    return {"userId": user_id, "unreadCount": components.in_app.unread_count(user_id)}


@router.post("/in-app/{notification_id}/read", response_model=InAppNotificationOut)
def mark_read(notification_id: str, components: Components = Depends(get_components)):
    return InAppNotificationOut.model_validate(components.in_app.mark_read(notification_id))


@router.get("/{notification_id}", response_model=NotificationLogOut)
def get_notification(notification_id: str, components: Components = Depends(get_components)):
    return NotificationLogOut.model_validate(components.service.get_notification(notification_id))


@router.post("/{notification_id}/resend", response_model=NotificationResponse, dependencies=[Depends(enforce_api_key)])
def resend_notification(notification_id: str, components: Components = Depends(get_components)):
    success = components.service.resend(notification_id)
    return NotificationResponse(
        success=success,
        message="Notification resent successfully" if success else "Failed to resend notification",
    )


def _error_body(request: Request, status: int, error: str, code: str, message: str, detail=None) -> JSONResponse:
    body = ErrorResponse(status=status, error=error, code=code, message=message, path=request.url.path, detail=detail)
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotificationError)
    async def notification_error(request: Request, exc: NotificationError):
        logger.warning("notification_error code=%s path=%s error=%s", exc.code, request.url.path, exc.message)
        return _error_body(request, exc.http_status, type(exc).__name__, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in exc.errors()}
        logger.warning("validation_failed path=%s errors=%s", request.url.path, errors)
        return _error_body(request, 400, "Validation Failed", "VALIDATION_ERROR", "Request validation failed", errors)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("unhandled_error path=%s error=%s", request.url.path, exc, exc_info=exc)
        return _error_body(request, 500, "Internal Server Error", "INTERNAL_ERROR", "An unexpected error occurred")


def create_app(components: Components, run_recovery: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Run the scheduled recovery loop with the application lifecycle."""

        recovery_task = None
        if run_recovery:
            recovery_task = asyncio.create_task(components.recovery.run_forever())
        yield
        if recovery_task is not None:
            recovery_task.cancel()
        components.service.shutdown()

    app = FastAPI(title="Notification Dispatch Service", lifespan=lifespan)
    app.state.components = components
    instrument_app(app)
    register_exception_handlers(app)

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        """Bind the caller's correlation id (or a fresh one) to this request."""

        trace_id = request.headers.get("x-correlation-id") or str(uuid4())
        token = trace_id_ctx.set(trace_id)
        try:
            response = await call_next(request)
        finally:
            trace_id_ctx.reset(token)
        response.headers["x-correlation-id"] = trace_id
        return response

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    app.include_router(router)
    return app


configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    ["service_name", "log_level", "postgres_dsn", "redis_url", "retry_max_attempts", "recovery_interval_seconds"],
)
app = create_app(build_components(settings, SessionLocal), run_recovery=settings.recovery_enabled)
