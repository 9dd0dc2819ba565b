from __future__ import annotations

import pytest

from gameio.events import LoopEvent
from gameio.frame_loop import FrameLoop
from gameio.scheduler import Scheduler, next_frame


class SteppingClock:
    """Clock the test moves by hand; `update` callbacks advance it to fake work."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_frames_within_budget_sleep_off_the_rest() -> None:
    clock = SteppingClock()
    slept: list[float] = []

    def fake_sleep(seconds: float) -> None:
        slept.append(seconds)
        clock.now += seconds

    def update(frame_no: int) -> None:
        clock.now += 0.004

    loop = FrameLoop(frame_rate=100.0, clock=clock, sleep=fake_sleep)
    stats = loop.run(update, max_frames=3)

    assert stats.frames == 3
    assert stats.stalled_frames == 0
    assert stats.longest_frame_s == pytest.approx(0.004)
    assert slept == [pytest.approx(0.006)] * 3
    assert stats.elapsed_s == pytest.approx(0.03)


def test_slow_update_counts_as_stall_and_emits_event() -> None:
    clock = SteppingClock()
    events: list[LoopEvent] = []

    def update(frame_no: int) -> None:
        # Frame 1 does a "blocking read".
        clock.now += 0.25 if frame_no == 1 else 0.001

    loop = FrameLoop(frame_rate=60.0, realtime=False, clock=clock, on_event=events.append)
    stats = loop.run(update, max_frames=4)

    assert stats.frames == 4
    assert stats.stalled_frames == 1
    assert stats.longest_frame_ms == pytest.approx(250.0)
    assert [e.type for e in events] == ["FRAME_STALLED"]
    assert events[0].payload["frame"] == 1


def test_until_stops_early() -> None:
    seen: list[int] = []
    loop = FrameLoop(realtime=False)
    stats = loop.run(seen.append, max_frames=100, until=lambda: len(seen) >= 5)
    assert stats.frames == 5
    assert seen == [0, 1, 2, 3, 4]


def test_scheduler_gets_one_tick_per_frame(scheduler: Scheduler) -> None:
    steps: list[int] = []

    async def script() -> str:
        for i in range(3):
            steps.append(i)
            await next_frame()
        return "done"

    task = scheduler.spawn(script())
    loop = FrameLoop(scheduler, realtime=False)
    stats = loop.run(max_frames=50, until=task.done)

    assert task.result() == "done"
    # Three suspensions plus the final resume.
    assert stats.frames == 4
    assert steps == [0, 1, 2]


def test_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        FrameLoop(frame_rate=0)
    with pytest.raises(ValueError):
        FrameLoop(realtime=False).run(max_frames=0)
