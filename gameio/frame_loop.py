from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gameio.events import LoopEvent
from gameio.scheduler import Scheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FrameStats:
    frame_budget_s: float
    frames: int = 0
    elapsed_s: float = 0.0
    longest_frame_s: float = 0.0
    # Frames whose update + scheduler tick ran past the budget (visible hitches).
    stalled_frames: int = 0

    @property
    def longest_frame_ms(self) -> float:
        return self.longest_frame_s * 1000.0


class FrameLoop:
    """A stand-in for an engine's main loop.

    Each frame calls the script's `update(frame_no)` and then gives the scheduler
    (if any) exactly one non-blocking tick. Whatever the update does synchronously
    is charged to that frame, which is how a blocking read turns into a hitch.
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        *,
        frame_rate: float = 60.0,
        realtime: bool = True,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Any] = time.sleep,
        on_event: Callable[[LoopEvent], Any] | None = None,
    ) -> None:
        if frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        self.scheduler = scheduler
        self.frame_budget_s = 1.0 / frame_rate
        self.realtime = realtime
        self._clock = clock
        self._sleep = sleep
        self._on_event = on_event or (scheduler.emit if scheduler is not None else None)

    def run(
        self,
        update: Callable[[int], Any] | None = None,
        *,
        max_frames: int,
        until: Callable[[], bool] | None = None,
    ) -> FrameStats:
        if max_frames < 1:
            raise ValueError("max_frames must be at least 1")

        stats = FrameStats(frame_budget_s=self.frame_budget_s)
        started = self._clock()

        for frame_no in range(max_frames):
            if until is not None and until():
                break

            t0 = self._clock()
            if update is not None:
                update(frame_no)
            if self.scheduler is not None:
                self.scheduler.tick(0.0)
            spent = self._clock() - t0

            stats.frames += 1
            stats.longest_frame_s = max(stats.longest_frame_s, spent)

            if spent > self.frame_budget_s:
                stats.stalled_frames += 1
                logger.debug("frame %d stalled: %.1fms (budget %.1fms)", frame_no, spent * 1000, self.frame_budget_s * 1000)
                if self._on_event is not None:
                    self._on_event(
                        LoopEvent.now(
                            type="FRAME_STALLED",
                            payload={"frame": frame_no, "spent_ms": round(spent * 1000, 3)},
                        )
                    )
            elif self.realtime:
                self._sleep(self.frame_budget_s - spent)

        stats.elapsed_s = self._clock() - started
        return stats
