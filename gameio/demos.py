"""Same request, four IO strategies, one frame loop.

Every strategy sends one payload to an echo server and waits for it to come
back while a `FrameLoop` keeps "rendering". The report shows what that wait
cost the game: how many frames it managed and how long the worst one took.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from gameio.api.models import DemoReport, Strategy
from gameio.connection import Connection, IOMode
from gameio.echo_server import DelayedEchoServer
from gameio.events import LoopEvent
from gameio.frame_loop import FrameLoop, FrameStats
from gameio.scheduler import Scheduler
from gameio.task import TaskStatus
from gameio.threaded import ThreadedReader

logger = logging.getLogger(__name__)

Listener = Callable[[LoopEvent], Any]


@dataclass(slots=True)
class _Exchange:
    """Progress of the single request/response, shared with the frame update."""

    expected: int
    received: bytearray = field(default_factory=bytearray)
    sent_at: float | None = None
    done_at: float | None = None

    @property
    def complete(self) -> bool:
        return len(self.received) >= self.expected

    def take(self, chunk: bytes) -> None:
        self.received += chunk
        if self.complete and self.done_at is None:
            self.done_at = time.perf_counter()


def _fan_out(listeners: Iterable[Listener]) -> Listener | None:
    fns = list(listeners)
    if not fns:
        return None

    def _emit(event: LoopEvent) -> None:
        for fn in fns:
            try:
                fn(event)
            except Exception:
                logger.exception("event listener %r failed on %s", fn, event.type)

    return _emit


def _run_blocking(*, address: tuple[str, int], payload: bytes, loop: FrameLoop, max_frames: int, timeout_s: float) -> tuple[FrameStats, _Exchange]:
    ex = _Exchange(expected=len(payload))
    with Connection.open(*address, mode=IOMode.blocking, timeout=timeout_s) as conn:

        def update(frame_no: int) -> None:
            if ex.sent_at is not None:
                return
            ex.sent_at = time.perf_counter()
            conn.send_all(payload)
            # The whole frame (and game) waits here until the server answers.
            ex.take(conn.recv_exactly(len(payload)))

        stats = loop.run(update, max_frames=max_frames, until=lambda: ex.complete)
    return stats, ex


def _run_polling(*, address: tuple[str, int], payload: bytes, loop: FrameLoop, max_frames: int, timeout_s: float) -> tuple[FrameStats, _Exchange]:
    ex = _Exchange(expected=len(payload))
    with Connection.open(*address, mode=IOMode.nonblocking, timeout=timeout_s) as conn:

        def update(frame_no: int) -> None:
            if ex.sent_at is None:
                ex.sent_at = time.perf_counter()
                conn.queue_send(payload)
            conn.flush()
            chunk = conn.poll_recv(len(payload))
            if chunk is None:
                return
            if chunk == b"":
                raise ConnectionError("echo server closed before replying")
            ex.take(chunk)

        stats = loop.run(update, max_frames=max_frames, until=lambda: ex.complete)
    return stats, ex


def _run_threaded(*, address: tuple[str, int], payload: bytes, loop: FrameLoop, max_frames: int, timeout_s: float) -> tuple[FrameStats, _Exchange]:
    ex = _Exchange(expected=len(payload))
    # Short socket timeout lets the reader thread notice stop() between reads.
    with Connection.open(*address, mode=IOMode.blocking, timeout=min(timeout_s, 0.05)) as conn:
        reader = ThreadedReader(conn)

        def update(frame_no: int) -> None:
            if ex.sent_at is None:
                ex.sent_at = time.perf_counter()
                conn.send_all(payload)
                reader.start()
            for chunk in reader.poll():
                ex.take(chunk)
            if reader.eof and not ex.complete:
                raise ConnectionError("echo server closed before replying")

        try:
            stats = loop.run(update, max_frames=max_frames, until=lambda: ex.complete)
        finally:
            reader.stop()
    return stats, ex


def _run_event_loop(
    *,
    address: tuple[str, int],
    payload: bytes,
    loop: FrameLoop,
    max_frames: int,
    timeout_s: float,
) -> tuple[FrameStats, _Exchange]:
    ex = _Exchange(expected=len(payload))
    scheduler = loop.scheduler
    if scheduler is None:
        raise ValueError("the event_loop strategy needs a FrameLoop with a scheduler")

    with Connection.open(*address, mode=IOMode.asynchronous, timeout=timeout_s) as conn:

        async def exchange() -> None:
            ex.sent_at = time.perf_counter()
            await conn.send_all_async(payload)
            ex.take(await conn.recv_exactly_async(len(payload)))

        task = scheduler.spawn(exchange(), name="echo-exchange")
        stats = loop.run(None, max_frames=max_frames, until=task.done)
        if not task.done():
            task.cancel("frame limit reached")
            scheduler.tick(0.0)
        elif task.status == TaskStatus.rejected:
            task.result()
    return stats, ex


_RUNNERS = {
    Strategy.blocking: _run_blocking,
    Strategy.polling: _run_polling,
    Strategy.threaded: _run_threaded,
    Strategy.event_loop: _run_event_loop,
}


def run_strategy(
    strategy: Strategy | str,
    *,
    address: tuple[str, int],
    payload: bytes = b"ping",
    frame_rate: float = 60.0,
    max_frames: int = 600,
    timeout_s: float = 5.0,
    realtime: bool = True,
    listeners: Iterable[Listener] = (),
) -> DemoReport:
    """Run one request/response with the given strategy while frames tick."""

    strategy = Strategy(strategy)
    if not payload:
        raise ValueError("payload must not be empty")

    listeners = list(listeners)
    scheduler: Scheduler | None = None
    if strategy == Strategy.event_loop:
        scheduler = Scheduler()
        for fn in listeners:
            scheduler.add_listener(fn)

    try:
        loop = FrameLoop(scheduler, frame_rate=frame_rate, realtime=realtime, on_event=_fan_out(listeners))
        stats, ex = _RUNNERS[strategy](address=address, payload=payload, loop=loop, max_frames=max_frames, timeout_s=timeout_s)
    finally:
        if scheduler is not None:
            scheduler.close()

    round_trip_ms = None
    if ex.sent_at is not None and ex.done_at is not None:
        round_trip_ms = round((ex.done_at - ex.sent_at) * 1000.0, 3)

    report = DemoReport(
        report_id=uuid4(),
        strategy=strategy,
        created_at=datetime.now(tz=UTC),
        frame_budget_ms=round(stats.frame_budget_s * 1000.0, 3),
        frames=stats.frames,
        longest_frame_ms=round(stats.longest_frame_ms, 3),
        stalled_frames=stats.stalled_frames,
        round_trip_ms=round_trip_ms,
        bytes_sent=len(payload),
        bytes_echoed=len(ex.received),
        completed=ex.complete,
    )
    logger.info(
        "%s: %d frames, worst %.1fms, rtt %sms",
        strategy.value,
        report.frames,
        report.longest_frame_ms,
        report.round_trip_ms,
    )
    return report


def compare_strategies(
    *,
    delay_s: float = 0.2,
    payload: bytes = b"ping",
    frame_rate: float = 60.0,
    max_frames: int = 600,
    strategies: Iterable[Strategy] = tuple(Strategy),
) -> list[DemoReport]:
    """Run each strategy against one shared echo server, in order."""

    with DelayedEchoServer(delay_s=delay_s) as server:
        return [
            run_strategy(s, address=server.address, payload=payload, frame_rate=frame_rate, max_frames=max_frames)
            for s in strategies
        ]
