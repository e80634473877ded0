"""Server-Sent Events sessions that poll a snapshot source and push changes."""

from __future__ import annotations

import asyncio
import enum
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import structlog
from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from pressroom.change_detection import ChangeDetector
from pressroom.config import ERROR_FRAME, FAIL_CLOSED
from pressroom.metrics import STREAM_FRAMES_SENT, STREAM_SESSIONS_OPEN, STREAM_TICK_FAILURES

logger = structlog.get_logger(__name__)

SnapshotSource = Callable[[], Awaitable[Any]]
SleepCallable = Callable[[float], Awaitable[Any]]
DisconnectProbe = Callable[[], Awaitable[bool]]

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_FRAME = ": keep-alive\n\n"


def encode_data_frame(payload: Any, *, event: Optional[str] = None) -> str:
    """Frame *payload* as a ``data:`` record, optionally with an event name."""

    body = json.dumps(jsonable_encoder(payload), ensure_ascii=False, separators=(",", ":"))
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {body}\n\n"


class SnapshotUnavailableError(RuntimeError):
    """Raised when the forced snapshot cannot be computed and the stream fails closed."""


class QueueFrameSink:
    """Outbound transport buffer drained by the HTTP response body."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.closed = False

    def send(self, frame: str) -> bool:
        """Queue *frame*; returns ``False`` once the sink is closed."""

        if self.closed:
            return False
        self._queue.put_nowait(frame)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def next_frame(self) -> Optional[str]:
        """Return the next frame, or ``None`` once the sink has been closed."""

        return await self._queue.get()


class PeriodicTask:
    """Run *callback* every *interval* seconds until cancelled."""

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        *,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "PeriodicTask":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            await self._callback()


class SessionState(str, enum.Enum):
    OPENING = "opening"
    ACTIVE = "active"
    CLOSED = "closed"


class StreamSession:
    """One subject, one transport, one poll task and an optional heartbeat task."""

    def __init__(
        self,
        stream: str,
        source: SnapshotSource,
        detector: ChangeDetector,
        sink: Any,
        *,
        poll_interval: float,
        heartbeat_interval: Optional[float] = None,
        subject_id: Optional[int] = None,
        max_consecutive_failures: Optional[int] = None,
        initial_failure_mode: str = FAIL_CLOSED,
        sleep: SleepCallable = asyncio.sleep,
        trace_id: Optional[str] = None,
    ) -> None:
        self.stream = stream
        self.subject_id = subject_id
        self.trace_id = trace_id
        self.state = SessionState.OPENING
        self.consecutive_failures = 0
        self.close_reason: Optional[str] = None
        self._source = source
        self._detector = detector
        self._sink = sink
        self._poll_interval = poll_interval
        self._heartbeat_interval = heartbeat_interval
        self._max_failures = max_consecutive_failures
        self._initial_failure_mode = initial_failure_mode
        self._sleep = sleep
        self._poll_task: Optional[PeriodicTask] = None
        self._heartbeat_task: Optional[PeriodicTask] = None
        # Set when the opening snapshot failed; the next good snapshot is sent unconditionally.
        self._pending_force = False

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def poll_task(self) -> Optional[PeriodicTask]:
        return self._poll_task

    @property
    def heartbeat_task(self) -> Optional[PeriodicTask]:
        return self._heartbeat_task

    async def open(self) -> None:
        """Emit the forced first snapshot and start the periodic tasks."""

        try:
            snapshot = await self._source()
        except Exception as exc:
            STREAM_TICK_FAILURES.labels(self.stream).inc()
            logger.warning(
                "stream_initial_snapshot_failed",
                stream=self.stream,
                subject_id=self.subject_id,
                trace_id=self.trace_id,
                error=str(exc),
            )
            if self._initial_failure_mode != ERROR_FRAME:
                self.close("initial_snapshot_failed")
                raise SnapshotUnavailableError(str(exc)) from exc
            self._pending_force = True
            self._send(encode_data_frame({"error": "snapshot_unavailable"}, event="error"), "error")
        else:
            self._detector.observe(snapshot, force=True)
            self._send(encode_data_frame(snapshot), "data")

        if self.state is not SessionState.OPENING:
            return
        self.state = SessionState.ACTIVE
        STREAM_SESSIONS_OPEN.labels(self.stream).inc()
        self._poll_task = PeriodicTask(
            f"{self.stream}-poll", self._poll_interval, self.poll, sleep=self._sleep
        ).start()
        if self._heartbeat_interval:
            self._heartbeat_task = PeriodicTask(
                f"{self.stream}-heartbeat", self._heartbeat_interval, self.heartbeat, sleep=self._sleep
            ).start()
        logger.info(
            "stream_session_opened",
            stream=self.stream,
            subject_id=self.subject_id,
            trace_id=self.trace_id,
            poll_interval=self._poll_interval,
            heartbeat_interval=self._heartbeat_interval,
        )

    async def poll(self) -> None:
        """Run one tick: recompute the snapshot and emit it if it changed."""

        if not self.active:
            return
        try:
            snapshot = await self._source()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.consecutive_failures += 1
            STREAM_TICK_FAILURES.labels(self.stream).inc()
            logger.warning(
                "stream_tick_failed",
                stream=self.stream,
                subject_id=self.subject_id,
                failures=self.consecutive_failures,
                error=str(exc),
            )
            if self._max_failures is not None and self.consecutive_failures >= self._max_failures:
                logger.error(
                    "stream_failure_limit_reached",
                    stream=self.stream,
                    subject_id=self.subject_id,
                    limit=self._max_failures,
                )
                self.close("failure_limit")
            return
        self.consecutive_failures = 0
        if not self.active:
            return
        if self._detector.observe(snapshot, force=self._pending_force):
            self._pending_force = False
            self._send(encode_data_frame(snapshot), "data")

    async def heartbeat(self) -> None:
        if not self.active:
            return
        self._send(HEARTBEAT_FRAME, "heartbeat")

    def abort(self) -> None:
        """Transport abort signal: the client went away."""

        self.close("client_abort")

    def cancel(self) -> None:
        """Transport cancellation callback: the response body was torn down."""

        self.close("cancelled")

    def close(self, reason: str = "closed") -> None:
        if self.state is SessionState.CLOSED:
            return
        was_active = self.state is SessionState.ACTIVE
        self.state = SessionState.CLOSED
        self.close_reason = reason
        for task in (self._poll_task, self._heartbeat_task):
            if task is not None:
                task.cancel()
        self._sink.close()
        if was_active:
            STREAM_SESSIONS_OPEN.labels(self.stream).dec()
        logger.info(
            "stream_session_closed",
            stream=self.stream,
            subject_id=self.subject_id,
            trace_id=self.trace_id,
            reason=reason,
        )

    def _send(self, frame: str, kind: str) -> None:
        if self._sink.send(frame):
            STREAM_FRAMES_SENT.labels(self.stream, kind).inc()


async def iter_frames(
    session: StreamSession,
    sink: QueueFrameSink,
    *,
    is_disconnected: Optional[DisconnectProbe] = None,
    check_interval: float = 1.0,
) -> AsyncIterator[str]:
    """Yield frames from *sink* until the session closes or the client leaves."""

    try:
        while True:
            try:
                frame = await asyncio.wait_for(sink.next_frame(), timeout=check_interval)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    session.abort()
                continue
            if frame is None:
                break
            yield frame
    finally:
        session.cancel()


class EventStreamResponse(StreamingResponse):
    """Streaming response that releases its session however the ASGI call ends.

    The body generator only cleans up once it has started; a failed
    ``http.response.start`` or an early disconnect never reaches it, so the
    session is cancelled here as well.
    """

    def __init__(self, session: StreamSession, content: AsyncIterator[str]) -> None:
        super().__init__(content, media_type=EVENT_STREAM_MEDIA_TYPE, headers=SSE_HEADERS)
        self.session = session

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.session.cancel()


async def open_event_stream(
    session: StreamSession,
    sink: QueueFrameSink,
    *,
    is_disconnected: Optional[DisconnectProbe] = None,
    check_interval: float = 1.0,
) -> EventStreamResponse:
    """Open *session* and wrap it in a ``text/event-stream`` response.

    Raises ``HTTPException(503)`` before any header is sent when the session
    fails closed on its first snapshot.
    """

    try:
        await session.open()
    except SnapshotUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Snapshot temporarily unavailable",
        )
    return EventStreamResponse(
        session,
        iter_frames(session, sink, is_disconnected=is_disconnected, check_interval=check_interval),
    )


__all__ = [
    "EVENT_STREAM_MEDIA_TYPE",
    "EventStreamResponse",
    "HEARTBEAT_FRAME",
    "SSE_HEADERS",
    "PeriodicTask",
    "QueueFrameSink",
    "SessionState",
    "SnapshotUnavailableError",
    "StreamSession",
    "encode_data_frame",
    "iter_frames",
    "open_event_stream",
]
