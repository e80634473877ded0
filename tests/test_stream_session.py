import asyncio
import json

import pytest
from prometheus_client import REGISTRY

from conftest import FakeSnapshotSource, RecordingSink, VirtualClock
from pressroom.change_detection import NewestIdChangeDetector, PayloadChangeDetector
from pressroom.config import ERROR_FRAME
from pressroom.sse_streams import (
    HEARTBEAT_FRAME,
    SessionState,
    SnapshotUnavailableError,
    StreamSession,
    encode_data_frame,
)


def _stats(total_users=3):
    return {
        "totalUsers": total_users,
        "totalArticles": 2,
        "pendingArticles": 1,
        "totalComments": 4,
        "userChartData": [],
        "latestUsers": [],
        "latestArticles": [],
    }


def _stats_session(source, sink, clock, **kwargs):
    return StreamSession(
        "admin_stats",
        source,
        PayloadChangeDetector(),
        sink,
        poll_interval=10,
        heartbeat_interval=15,
        subject_id=1,
        sleep=clock.sleep,
        **kwargs,
    )


def _notifications_session(source, sink, clock):
    return StreamSession(
        "notifications",
        source,
        NewestIdChangeDetector(),
        sink,
        poll_interval=5,
        subject_id=7,
        sleep=clock.sleep,
    )


def _payloads(frames):
    return [json.loads(frame[len("data: "):]) for frame in frames if frame.startswith("data: ")]


def test_encode_data_frame_is_one_sse_record():
    frame = encode_data_frame({"name": "چهارشنبه", "users": 2})
    assert frame == 'data: {"name":"چهارشنبه","users":2}\n\n'


def test_encode_data_frame_with_event_name():
    frame = encode_data_frame({"error": "x"}, event="error")
    assert frame.startswith("event: error\ndata: ")
    assert frame.endswith("\n\n")


def test_first_frame_is_current_snapshot(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()
        try:
            assert session.state is SessionState.ACTIVE
            assert sink.frames == [encode_data_frame(_stats())]
            assert session.poll_task.running
            assert session.heartbeat_task.running
        finally:
            session.close()

    asyncio.run(scenario())


def test_identical_stats_are_not_repeated(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()
        await clock.advance(10)
        assert source.calls == 2
        assert _payloads(sink.frames) == [_stats()]

        source.value = _stats(total_users=4)
        await clock.advance(10)
        assert _payloads(sink.frames) == [_stats(), _stats(total_users=4)]

        await clock.advance(10)
        assert len(_payloads(sink.frames)) == 2
        session.close()

    asyncio.run(scenario())


def test_heartbeat_without_data_change(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()
        await clock.advance(15)
        assert sink.frames == [encode_data_frame(_stats()), HEARTBEAT_FRAME]

        await clock.advance(15)
        assert sink.frames.count(HEARTBEAT_FRAME) == 2
        assert len(_payloads(sink.frames)) == 1
        session.close()

    asyncio.run(scenario())


def test_heartbeat_keeps_cadence_alongside_data(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()
        source.value = _stats(total_users=9)
        await clock.advance(30)
        # data at t=10, heartbeats at t=15 and t=30
        assert sink.frames[1] == encode_data_frame(_stats(total_users=9))
        assert sink.frames.count(HEARTBEAT_FRAME) == 2
        session.close()

    asyncio.run(scenario())


def test_notification_stream_example(clock: VirtualClock, sink: RecordingSink):
    five = {"id": 5, "type": "LIKE", "message": "liked"}
    six = {"id": 6, "type": "LIKE", "message": "liked again"}
    source = FakeSnapshotSource({"notifications": [five], "unreadCount": 1})

    async def scenario():
        session = _notifications_session(source, sink, clock)
        await session.open()
        assert _payloads(sink.frames) == [{"notifications": [five], "unreadCount": 1}]

        await clock.advance(5)
        assert len(sink.frames) == 1

        source.value = {"notifications": [six, five], "unreadCount": 2}
        await clock.advance(5)
        assert _payloads(sink.frames)[-1] == {"notifications": [six, five], "unreadCount": 2}
        assert session._detector.last_id == 6

        await clock.advance(60)
        assert len(sink.frames) == 2
        session.close()

    asyncio.run(scenario())


def test_notification_stream_has_no_heartbeat(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource({"notifications": [], "unreadCount": 0})

    async def scenario():
        session = _notifications_session(source, sink, clock)
        await session.open()
        assert session.heartbeat_task is None
        await clock.advance(60)
        assert HEARTBEAT_FRAME not in sink.frames
        session.close()

    asyncio.run(scenario())


def test_empty_notification_list_only_emits_first_frame(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource({"notifications": [], "unreadCount": 0})

    async def scenario():
        session = _notifications_session(source, sink, clock)
        await session.open()
        source.value = {"notifications": [], "unreadCount": 3}
        await clock.advance(20)
        assert len(sink.frames) == 1
        session.close()

    asyncio.run(scenario())


def test_abort_and_cancel_close_transport_once(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()
        poll_task, heartbeat_task = session.poll_task, session.heartbeat_task

        session.abort()
        session.cancel()
        await clock.settle()

        assert sink.close_calls == 1
        assert session.state is SessionState.CLOSED
        assert session.close_reason == "client_abort"
        assert not poll_task.running
        assert not heartbeat_task.running

        calls = source.calls
        await clock.advance(60)
        assert source.calls == calls
        assert len(sink.frames) == 1

    asyncio.run(scenario())


def test_tick_failure_is_logged_and_polling_continues(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock)
        await session.open()

        source.error = RuntimeError("database is locked")
        await clock.advance(10)
        assert session.active
        assert session.consecutive_failures == 1
        assert len(sink.frames) == 1

        source.error = None
        source.value = _stats(total_users=5)
        await clock.advance(10)
        assert session.consecutive_failures == 0
        assert _payloads(sink.frames)[-1] == _stats(total_users=5)
        session.close()

    asyncio.run(scenario())


def test_failure_limit_closes_session(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())

    async def scenario():
        session = _stats_session(source, sink, clock, max_consecutive_failures=2)
        await session.open()
        source.error = RuntimeError("store unreachable")

        await clock.advance(10)
        assert session.active
        await clock.advance(10)
        assert session.state is SessionState.CLOSED
        assert session.close_reason == "failure_limit"
        assert sink.close_calls == 1

        session.cancel()
        assert sink.close_calls == 1

    asyncio.run(scenario())


def test_initial_failure_fails_closed_by_default(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())
    source.error = RuntimeError("store unreachable")

    async def scenario():
        session = _stats_session(source, sink, clock)
        with pytest.raises(SnapshotUnavailableError):
            await session.open()
        assert session.state is SessionState.CLOSED
        assert session.poll_task is None
        assert sink.frames == []
        assert sink.close_calls == 1

    asyncio.run(scenario())


def test_initial_failure_can_emit_error_frame(clock: VirtualClock, sink: RecordingSink):
    source = FakeSnapshotSource(_stats())
    source.error = RuntimeError("store unreachable")

    async def scenario():
        session = _stats_session(source, sink, clock, initial_failure_mode=ERROR_FRAME)
        await session.open()
        assert session.active
        assert sink.frames[0].startswith("event: error\n")

        source.error = None
        await clock.advance(10)
        assert _payloads(sink.frames) == [_stats()]
        session.close()

    asyncio.run(scenario())


def test_close_is_idempotent_without_open(sink: RecordingSink):
    session = StreamSession(
        "admin_stats",
        FakeSnapshotSource(_stats()),
        PayloadChangeDetector(),
        sink,
        poll_interval=10,
    )
    session.close()
    session.close("again")
    assert sink.close_calls == 1
    assert session.close_reason == "closed"


def test_error_frame_then_first_good_snapshot_is_always_sent(clock: VirtualClock, sink: RecordingSink):
    empty = {"notifications": [], "unreadCount": 0}
    source = FakeSnapshotSource(empty)
    source.error = RuntimeError("store unreachable")

    async def scenario():
        session = StreamSession(
            "notifications",
            source,
            NewestIdChangeDetector(),
            sink,
            poll_interval=5,
            subject_id=7,
            initial_failure_mode=ERROR_FRAME,
            sleep=clock.sleep,
        )
        await session.open()
        source.error = None

        await clock.advance(5)
        assert _payloads(sink.frames) == [empty]

        await clock.advance(25)
        assert _payloads(sink.frames) == [empty]
        session.close()

    asyncio.run(scenario())


def test_frames_dropped_by_closed_sink_are_not_counted(sink: RecordingSink):
    labels = {"stream": "closed_sink_stream", "kind": "heartbeat"}
    session = StreamSession(
        "closed_sink_stream",
        FakeSnapshotSource(_stats()),
        PayloadChangeDetector(),
        sink,
        poll_interval=10,
    )
    session._send(HEARTBEAT_FRAME, "heartbeat")
    assert REGISTRY.get_sample_value("pressroom_stream_frames_total", labels) == 1.0

    session.close()
    session._send(HEARTBEAT_FRAME, "heartbeat")
    assert REGISTRY.get_sample_value("pressroom_stream_frames_total", labels) == 1.0
    assert sink.frames == [HEARTBEAT_FRAME]
