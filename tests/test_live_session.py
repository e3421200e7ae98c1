import asyncio

import pytest

from attendance_client.camera import CameraCapture, Preview
from attendance_client.context import SessionContext
from attendance_client.dispatcher import CycleResult
from attendance_client.errors import (
    CameraUnavailable, NetworkError, PreconditionMissing, ServiceError,
)
from attendance_client.live_session import LiveSession
from attendance_client.scheduler import SamplingScheduler, SchedulerState

from conftest import CapFactory, FakeApi, RecordingLifecycle, ScriptedDispatcher, wait_for


class RecordingCamera(CameraCapture):
    def __init__(self, events, **kwargs):
        super().__init__(preview=Preview(show=False), capture_factory=CapFactory(), **kwargs)
        self.events = events

    def release(self):
        self.events.append("release")
        super().release()


def test_detections_accumulate_across_cycles(ctx, camera):
    api = FakeApi(responses=[
        {"detectedStudents": ["A", "B"]},
        {"detectedStudents": ["B"]},
        {"detectedStudents": ["C"]},
    ])

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01)
        await session.start()
        await wait_for(lambda: session.count == 3)
        return await session.stop()

    summary = asyncio.run(scenario())
    assert summary.seen == ("A", "B", "C")
    assert summary.count == 3
    assert summary.remote_ended
    assert api.count("start") == 1
    assert api.count("stop") == 1


def test_stop_order_is_scheduler_end_release(ctx):
    events = []

    async def scenario():
        camera = RecordingCamera(events)
        scheduler = SamplingScheduler(0.01)
        lifecycle = RecordingLifecycle(events, scheduler)
        session = LiveSession(ctx, None, camera, scheduler=scheduler,
                              lifecycle=lifecycle, dispatcher=ScriptedDispatcher())
        await session.start()
        await wait_for(lambda: lifecycle.begin_calls == 1)
        await session.stop()

    asyncio.run(scenario())
    assert events == ["begin", ("end", SchedulerState.STOPPED), "release"]


def test_end_without_begin_still_orders_stop_before_release(ctx):
    events = []

    async def scenario():
        camera = RecordingCamera(events)
        scheduler = SamplingScheduler(0.01)
        lifecycle = RecordingLifecycle(events, scheduler)
        session = LiveSession(ctx, None, camera, scheduler=scheduler, lifecycle=lifecycle)
        return await session.stop()

    summary = asyncio.run(scenario())
    assert events == [("end", SchedulerState.STOPPED), "release"]
    assert summary.remote_ended
    assert summary.count == 0


def test_end_failure_still_releases_camera(ctx, camera, cap_factory):
    api = FakeApi()
    api.stop_error = NetworkError("down")
    messages = []

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01, notify=messages.append)
        await session.start()
        return await session.stop()

    summary = asyncio.run(scenario())
    assert not summary.remote_ended
    assert cap_factory.caps[0].release_calls == 1
    assert any("Error stopping attendance" in m for m in messages)


def test_stop_twice_is_same_as_once(ctx, camera, cap_factory):
    api = FakeApi()

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01)
        await session.start()
        first = await session.stop()
        second = await session.stop()
        return session, first, second

    session, first, second = asyncio.run(scenario())
    assert first == second
    assert api.count("stop") == 1
    assert cap_factory.caps[0].release_calls == 1
    assert session.scheduler.state is SchedulerState.STOPPED


def test_concurrent_stops_share_one_shutdown(ctx, camera):
    api = FakeApi()

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01)
        await session.start()
        return await asyncio.gather(session.stop(), session.stop())

    a, b = asyncio.run(scenario())
    assert a == b
    assert api.count("stop") == 1


def test_camera_failure_blocks_begin_and_scheduler(ctx):
    camera = CameraCapture(preview=Preview(show=False), capture_factory=CapFactory(opened=False))
    scheduler = SamplingScheduler(0.01)
    lifecycle = RecordingLifecycle(scheduler=scheduler)
    dispatcher = ScriptedDispatcher()
    messages = []

    async def scenario():
        session = LiveSession(ctx, None, camera, scheduler=scheduler, lifecycle=lifecycle,
                              dispatcher=dispatcher, notify=messages.append)
        with pytest.raises(CameraUnavailable):
            await session.start()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert lifecycle.begin_calls == 0
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.ticks == 0
    assert dispatcher.calls == 0
    assert messages


def test_incomplete_context_fails_before_anything_remote(camera, cap_factory):
    api = FakeApi()

    async def scenario():
        session = LiveSession(SessionContext("CS", "A", ""), api, camera, interval=0.01)
        with pytest.raises(PreconditionMissing):
            await session.start()

    asyncio.run(scenario())
    assert api.calls == []
    assert cap_factory.caps == []


def test_three_consecutive_failures_halt_sampling(ctx, camera):
    dispatcher = ScriptedDispatcher(fail_always=True)
    messages = []

    async def scenario():
        session = LiveSession(ctx, FakeApi(), camera, interval=0.01, dispatcher=dispatcher,
                              max_consecutive_failures=3, notify=messages.append)
        await session.start()
        await wait_for(lambda: session.scheduler.state is SchedulerState.STOPPED)
        calls_at_halt = dispatcher.calls
        await asyncio.sleep(0.1)
        summary = await session.close()
        return session, calls_at_halt, summary

    session, calls_at_halt, summary = asyncio.run(scenario())
    assert calls_at_halt == 3
    assert dispatcher.calls == 3
    assert session.halted and summary.halted
    assert session.status == "Stopped"
    assert any("3 failed attempts" in m for m in messages)


def test_success_resets_failure_streak(ctx, camera):
    boom = ServiceError("500", 500)
    dispatcher = ScriptedDispatcher(script=[
        boom, boom, CycleResult(new_detections=("A",)),
        boom, boom, CycleResult(new_detections=("B",)),
    ])

    async def scenario():
        session = LiveSession(ctx, FakeApi(), camera, interval=0.01, dispatcher=dispatcher,
                              max_consecutive_failures=3)
        await session.start()
        await wait_for(lambda: dispatcher.calls >= 8)
        return session, await session.stop()

    session, summary = asyncio.run(scenario())
    assert not session.halted
    assert summary.seen == ("A", "B")


def test_threshold_is_configurable(ctx, camera):
    dispatcher = ScriptedDispatcher(fail_always=True)

    async def scenario():
        session = LiveSession(ctx, FakeApi(), camera, interval=0.01, dispatcher=dispatcher,
                              max_consecutive_failures=5)
        await session.start()
        await wait_for(lambda: session.halted)
        await session.close()

    asyncio.run(scenario())
    assert dispatcher.calls == 5


def test_result_arriving_after_stop_is_discarded(ctx, camera):
    class SlowDispatcher:
        def __init__(self):
            self.release = asyncio.Event()
            self.calls = 0

        async def dispatch(self, frame_bytes, ctx):
            self.calls += 1
            await self.release.wait()
            return CycleResult(new_detections=("LATE",))

    async def scenario():
        dispatcher = SlowDispatcher()
        session = LiveSession(ctx, FakeApi(), camera, interval=0.01, dispatcher=dispatcher)
        await session.start()
        await wait_for(lambda: dispatcher.calls >= 1)
        summary = await session.stop()
        dispatcher.release.set()
        await session.scheduler.drain()
        return session, summary

    session, summary = asyncio.run(scenario())
    assert session.seen == frozenset()
    assert summary.count == 0


def test_begin_failure_is_reported_but_sampling_continues(ctx, camera):
    api = FakeApi(responses=[{"detectedStudents": ["A"]}])
    api.start_error = NetworkError("refused")
    messages = []

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01, notify=messages.append)
        await session.start()
        await wait_for(lambda: session.count == 1)
        running = session.scheduler.running
        await session.stop()
        return running

    assert asyncio.run(scenario())
    assert any("Failed to start attendance session" in m for m in messages)


def test_close_releases_without_ending_remote(ctx, camera, cap_factory):
    api = FakeApi()

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01)
        await session.start()
        closed = await session.close()
        stopped = await session.stop()
        return closed, stopped

    closed, stopped = asyncio.run(scenario())
    assert closed == stopped
    assert not closed.remote_ended
    assert api.count("stop") == 0
    assert cap_factory.caps[0].release_calls == 1


def test_context_manager_releases_on_error(ctx, camera, cap_factory):
    async def scenario():
        async with LiveSession(ctx, FakeApi(), camera, interval=0.01):
            raise RuntimeError("navigated away")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert cap_factory.caps[0].release_calls == 1


def test_processed_frame_is_kept_for_display(ctx, camera):
    import base64

    api = FakeApi(responses=[{"processedFrame": base64.b64encode(b"jpeg").decode()}])

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01)
        await session.start()
        await wait_for(lambda: session.processed_image is not None)
        await session.stop()
        return session

    session = asyncio.run(scenario())
    assert session.processed_image == b"jpeg"


def test_bad_processed_frame_still_counts_students(ctx, camera):
    api = FakeApi(responses=[
        {"processedFrame": "***not base64***", "detectedStudents": ["A"]},
        {"processedFrame": "aGVsbG8=\n", "detectedStudents": ["B"]},
        {"processedFrame": "***not base64***", "detectedStudents": ["C"]},
        {"processedFrame": "***not base64***", "detectedStudents": ["C"]},
    ])

    async def scenario():
        session = LiveSession(ctx, api, camera, interval=0.01, max_consecutive_failures=3)
        await session.start()
        await wait_for(lambda: api.count("process") >= 4)
        await asyncio.sleep(0.05)
        return session, await session.stop()

    session, summary = asyncio.run(scenario())
    assert summary.seen == ("A", "B", "C")
    assert not session.halted
    assert session.consecutive_failures == 0
