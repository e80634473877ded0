"""
HTTP API for Pressroom live streams.

This FastAPI application pushes admin dashboard statistics, per-user
notifications and the admin support queue to browsers over Server-Sent
Events.  Each connection gets its own :class:`StreamSession` that polls a
snapshot query, pushes only changed snapshots and tears itself down when the
client leaves.  One-shot JSON variants of the same snapshots are exposed for
initial page loads.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

import structlog
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from structlog.contextvars import bind_contextvars, unbind_contextvars

from pressroom.auth import Subject, require_admin_subject, require_user_subject
from pressroom.change_detection import NewestIdChangeDetector, PayloadChangeDetector
from pressroom.config import get_stream_settings
from pressroom.db.session import dispose_engine, get_session, initialise_schema, run_in_session
from pressroom.metrics import REQUEST_COUNTER, REQUEST_LATENCY
from pressroom.notifications_service import NotificationService
from pressroom.sse_streams import QueueFrameSink, SnapshotSource, StreamSession, open_event_stream
from pressroom.stats_service import get_admin_dashboard_stats
from pressroom.support_service import list_support_tickets

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(message)s")

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

_TRACE_ID_CTX: ContextVar[str | None] = ContextVar("trace_id", default=None)

notification_service = NotificationService(history_limit=20)


def current_trace_id() -> str | None:
    """Return the trace identifier bound to the current request context."""

    return _TRACE_ID_CTX.get()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - exercised indirectly in integration
    logger.info("lifespan_startup")
    if os.getenv("PRESSROOM_AUTO_CREATE_SCHEMA", "1").lower() in {"1", "true", "yes"}:
        await run_in_threadpool(initialise_schema)
    start_ts = time.time()
    try:
        yield
    finally:
        dispose_engine()
        logger.info("lifespan_shutdown_complete", uptime=time.time() - start_ts)


app = FastAPI(title="Pressroom Streams API", lifespan=lifespan)


@app.middleware("http")
async def inject_trace_id(request: Request, call_next):
    """Attach or propagate a trace identifier for each request."""

    trace_id = request.headers.get("x-trace-id") or uuid.uuid4().hex
    token = _TRACE_ID_CTX.set(trace_id)
    bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
    request.state.trace_id = trace_id
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        logger.exception("request_failed", path=request.url.path, method=request.method)
        raise
    finally:
        if response is not None:
            response.headers["X-Trace-Id"] = trace_id
        try:
            unbind_contextvars("trace_id", "path", "method")
        except LookupError:  # pragma: no cover
            pass
        _TRACE_ID_CTX.reset(token)


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


@app.middleware("http")
async def track_http_metrics(request: Request, call_next):
    """Emit Prometheus counters and histograms for each request."""

    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        endpoint = _route_template(request)
        REQUEST_COUNTER.labels(request.method, endpoint, "500").inc()
        REQUEST_LATENCY.labels(request.method, endpoint).observe(time.perf_counter() - start)
        raise
    endpoint = _route_template(request)
    REQUEST_COUNTER.labels(request.method, endpoint, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, endpoint).observe(time.perf_counter() - start)
    return response


def _snapshot_source(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> SnapshotSource:
    """Bind a synchronous snapshot query to a fresh session run off the event loop."""

    async def _source() -> Any:
        return await run_in_threadpool(run_in_session, fn, *args, **kwargs)

    return _source


async def _serve_stream(
    request: Request,
    *,
    stream: str,
    subject: Subject,
    source: SnapshotSource,
    detector,
    poll_interval: float,
    heartbeat_interval: Optional[float],
) -> StreamingResponse:
    settings = get_stream_settings()
    sink = QueueFrameSink()
    session = StreamSession(
        stream,
        source,
        detector,
        sink,
        poll_interval=poll_interval,
        heartbeat_interval=heartbeat_interval,
        subject_id=subject.id,
        max_consecutive_failures=settings.max_consecutive_failures,
        initial_failure_mode=settings.initial_failure_mode,
        trace_id=current_trace_id(),
    )
    return await open_event_stream(
        session,
        sink,
        is_disconnected=request.is_disconnected,
        check_interval=settings.disconnect_check_interval,
    )


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics", response_model=None)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/api/admin/stats")
def admin_stats(
    subject: Subject = Depends(require_admin_subject),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Return the dashboard statistics snapshot once."""

    return get_admin_dashboard_stats(db)


@app.get("/api/admin/stats/stream", response_model=None)
async def admin_stats_stream(
    request: Request,
    subject: Subject = Depends(require_admin_subject),
) -> StreamingResponse:
    """Stream dashboard statistics whenever they change, with keep-alive comments."""

    settings = get_stream_settings()
    return await _serve_stream(
        request,
        stream="admin_stats",
        subject=subject,
        source=_snapshot_source(get_admin_dashboard_stats),
        detector=PayloadChangeDetector(),
        poll_interval=settings.stats_poll_interval,
        heartbeat_interval=settings.heartbeat_interval,
    )


@app.get("/api/admin/support/tickets/stream", response_model=None)
async def admin_support_tickets_stream(
    request: Request,
    status: Optional[str] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None),
    subject: Subject = Depends(require_admin_subject),
) -> StreamingResponse:
    """Stream the filtered support queue whenever any ticket changes."""

    settings = get_stream_settings()
    return await _serve_stream(
        request,
        stream="support_tickets",
        subject=subject,
        source=_snapshot_source(list_support_tickets, status=status, priority=priority, search=q),
        detector=PayloadChangeDetector(),
        poll_interval=settings.tickets_poll_interval,
        heartbeat_interval=settings.heartbeat_interval,
    )


@app.get("/api/notifications")
def get_notifications(
    subject: Subject = Depends(require_user_subject),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Return the caller's recent notifications and unread count."""

    return notification_service.snapshot(db, subject.id)


@app.patch("/api/notifications")
def mark_notifications_read(
    subject: Subject = Depends(require_user_subject),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Mark every unread notification of the caller as read."""

    updated = notification_service.mark_all_read(db, subject.id)
    return {"message": "Notifications marked as read", "updated": updated}


@app.get("/api/notifications/stream", response_model=None)
async def notifications_stream(
    request: Request,
    subject: Subject = Depends(require_user_subject),
) -> StreamingResponse:
    """Stream the caller's notifications whenever a newer one arrives."""

    settings = get_stream_settings()
    return await _serve_stream(
        request,
        stream="notifications",
        subject=subject,
        source=_snapshot_source(notification_service.snapshot, subject.id),
        detector=NewestIdChangeDetector(),
        poll_interval=settings.notifications_poll_interval,
        heartbeat_interval=None,
    )


__all__ = ["app", "current_trace_id", "notification_service"]
