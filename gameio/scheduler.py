"""Single-threaded cooperative scheduler.

Coroutines are plain `async def` functions. They only give up control at the
await markers defined here (`sleep`, `next_frame`, `wait_readable`,
`wait_writable`) or by awaiting a `Task`. Everything between two markers runs
uninterrupted, which is what makes the model easy to reason about in a game
script, and also why one slow call between markers stalls every other task.

One `tick()` is one scheduling step, so an engine can drive the loop once per
frame without ever blocking its update.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import selectors
import socket
import threading
import time
import types
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Generator
from dataclasses import dataclass
from typing import Any

from gameio.errors import ConnectionClosed, InvalidTaskState, IOTimeout, TaskCancelled
from gameio.events import LoopEvent
from gameio.task import Task, TaskStatus

logger = logging.getLogger(__name__)

_WAKE = object()


# ---- await markers ----


@dataclass(frozen=True, slots=True)
class _Sleep:
    seconds: float


@dataclass(frozen=True, slots=True)
class _NextFrame:
    pass


@dataclass(frozen=True, slots=True)
class _WaitIO:
    sock: socket.socket
    event: int
    timeout: float | None


@types.coroutine
def sleep(seconds: float) -> Generator[Any, Any, None]:
    if seconds < 0:
        raise ValueError("sleep() needs a non-negative delay")
    yield _Sleep(seconds)


@types.coroutine
def next_frame() -> Generator[Any, Any, None]:
    """Yield control until the next scheduler tick."""

    yield _NextFrame()


@types.coroutine
def wait_readable(sock: socket.socket, timeout: float | None = None) -> Generator[Any, Any, None]:
    yield _WaitIO(sock=sock, event=selectors.EVENT_READ, timeout=timeout)


@types.coroutine
def wait_writable(sock: socket.socket, timeout: float | None = None) -> Generator[Any, Any, None]:
    yield _WaitIO(sock=sock, event=selectors.EVENT_WRITE, timeout=timeout)


# ---- handles ----


class Handle:
    __slots__ = ("callback", "args", "when", "cancelled")

    def __init__(self, callback: Callable[..., Any], args: tuple[Any, ...], when: float | None = None) -> None:
        self.callback = callback
        self.args = args
        self.when = when
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __repr__(self) -> str:
        state = " cancelled" if self.cancelled else ""
        return f"<Handle {getattr(self.callback, '__qualname__', self.callback)!r}{state}>"


TimerHandle = Handle


class CoroutineTask(Task):
    """A Task driven by a coroutine running on a Scheduler.

    Its outcome is decided by the coroutine, so `resolve`/`reject` are off limits.
    `cancel()` is a request: the coroutine sees `TaskCancelled` at its await point
    and may clean up (or even swallow it and return normally).
    """

    def __init__(self, coro: Coroutine[Any, Any, Any], *, scheduler: "Scheduler", name: str | None = None) -> None:
        super().__init__(name=name or getattr(coro, "__qualname__", None))
        self._coro = coro
        self._scheduler = scheduler
        self._pending_step: Handle | None = None
        self._cleanup_wait: Callable[[], None] | None = None
        self._running = False
        self._cancel_msg: str | None = None
        self._cancel_requested = False
        self._cancel_delivered = False

    def resolve(self, value: Any = None) -> None:
        raise RuntimeError("a coroutine task settles from its own coroutine")

    def reject(self, exc: BaseException) -> None:
        raise RuntimeError("a coroutine task settles from its own coroutine")

    def cancel(self, msg: str | None = None) -> bool:
        if self.done():
            return False
        if self._cancel_requested:
            return True
        self._cancel_requested = True
        self._cancel_msg = msg
        if not self._running:
            # Suspended: abandon whatever it waits on and wake it with the cancellation.
            self._drop_wait()
            self._schedule_step(exc=self._cancel_exc())
        return True

    def _cancel_exc(self) -> TaskCancelled:
        return TaskCancelled(self._cancel_msg or f"{self.name} was cancelled")

    def _drop_wait(self) -> None:
        if self._pending_step is not None:
            self._pending_step.cancel()
            self._pending_step = None
        if self._cleanup_wait is not None:
            self._cleanup_wait()
            self._cleanup_wait = None

    def _schedule_step(self, value: Any = None, exc: BaseException | None = None) -> None:
        self._cleanup_wait = None
        self._pending_step = self._scheduler.call_soon(self._step, value, exc)

    def _step(self, value: Any = None, exc: BaseException | None = None) -> None:
        self._pending_step = None
        if self.done():
            return

        self._running = True
        try:
            if exc is not None:
                if isinstance(exc, TaskCancelled):
                    self._cancel_delivered = True
                marker = self._coro.throw(exc)
            else:
                marker = self._coro.send(value)
        except StopIteration as stop:
            self._running = False
            self._set_result(stop.value)
            return
        except TaskCancelled as e:
            self._running = False
            self._set_cancelled(exc=e)
            return
        except Exception as e:
            self._running = False
            self._set_exception(e)
            return
        except BaseException as e:
            self._running = False
            self._set_exception(e)
            raise
        self._running = False
        self._park(marker)

    def _park(self, marker: Any) -> None:
        if self._cancel_requested and not self._cancel_delivered:
            # Cancelled while running: deliver at the first suspension point.
            self._schedule_step(exc=self._cancel_exc())
            return

        sched = self._scheduler
        if isinstance(marker, _NextFrame):
            self._schedule_step()
        elif isinstance(marker, _Sleep):
            self._pending_step = sched.call_later(marker.seconds, self._step)
        elif isinstance(marker, _WaitIO):
            sched._wait_io(self, marker)
        elif isinstance(marker, Task):
            if marker is self:
                self._schedule_step(exc=RuntimeError(f"{self.name} cannot await itself"))
                return
            self._await_task(marker)
        else:
            self._schedule_step(exc=TypeError(f"{self.name} awaited {marker!r}, which this scheduler can't wait on"))

    def _await_task(self, other: Task) -> None:
        def _wakeup(_: Task) -> None:
            self._schedule_step()

        other.add_done_callback(_wakeup)
        if not other.done():
            self._cleanup_wait = lambda: other.remove_done_callback(_wakeup)


class Scheduler:
    """Event loop multiplexing timers, socket readiness and coroutine tasks on one thread."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, selector: selectors.BaseSelector | None = None) -> None:
        self._clock = clock
        self._selector = selector or selectors.DefaultSelector()
        self._ready: deque[Handle] = deque()
        self._timers: list[tuple[float, int, Handle]] = []
        self._seq = itertools.count()
        self._readers: dict[int, Callable[[], None]] = {}
        self._writers: dict[int, Callable[[], None]] = {}
        self._listeners: list[Callable[[LoopEvent], Any]] = []
        self._threadsafe: deque[Handle] = deque()
        self._threadsafe_lock = threading.Lock()
        self._threads_in_flight = 0
        self._ticking = False
        self._closed = False

        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._selector.register(self._wake_r, selectors.EVENT_READ, _WAKE)

    def __enter__(self) -> "Scheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def time(self) -> float:
        return self._clock()

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- scheduling ----

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> Handle:
        self._check_open()
        handle = Handle(fn, args)
        self._ready.append(handle)
        return handle

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        self._check_open()
        if delay < 0:
            raise ValueError("delay must be non-negative")
        when = self._clock() + delay
        handle = Handle(fn, args, when=when)
        heapq.heappush(self._timers, (when, next(self._seq), handle))
        return handle

    def call_soon_threadsafe(self, fn: Callable[..., Any], *args: Any) -> Handle:
        """The only scheduling call that is safe from another thread."""

        handle = Handle(fn, args)
        with self._threadsafe_lock:
            if self._closed:
                # Late results from worker threads land here after close().
                logger.debug("scheduler closed, dropping %r", handle)
                handle.cancel()
                return handle
            self._threadsafe.append(handle)
            try:
                self._wake_w.send(b"\0")
            except BlockingIOError:
                # Buffer full: a wake-up is already pending.
                pass
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> CoroutineTask:
        if not isinstance(coro, Coroutine):
            raise TypeError(f"spawn() needs a coroutine, got {type(coro).__name__}")
        task = CoroutineTask(coro, scheduler=self, name=name)
        task.add_done_callback(self._emit_settled)
        task._schedule_step()
        self.emit(LoopEvent.now(type="TASK_SPAWNED", task_id=task.id, payload={"name": task.name}))
        return task

    def run_in_thread(self, fn: Callable[..., Any], *args: Any, name: str | None = None) -> Task:
        """Run a blocking call on a worker thread; the task settles back on the loop thread."""

        self._check_open()
        task = Task(name=name or getattr(fn, "__name__", None))
        self._threads_in_flight += 1

        def _worker() -> None:
            try:
                value = fn(*args)
            except Exception as e:
                self.call_soon_threadsafe(self._settle_from_thread, task, None, e)
            else:
                self.call_soon_threadsafe(self._settle_from_thread, task, value, None)

        threading.Thread(target=_worker, name=f"gameio-{task.name}", daemon=True).start()
        return task

    def _settle_from_thread(self, task: Task, value: Any, exc: Exception | None) -> None:
        self._threads_in_flight -= 1
        if task.done():
            # Cancelled while the thread was busy; the result is dropped.
            return
        if exc is not None:
            task.reject(exc)
        else:
            task.resolve(value)

    def gather(self, *aws: Task | Coroutine[Any, Any, Any], name: str | None = None) -> Task:
        """Combine tasks into one that resolves to their results, in argument order.

        The first child to fail settles the gather task with that failure and
        the remaining children are cancelled.
        """

        children = [aw if isinstance(aw, Task) else self.spawn(aw) for aw in aws]
        out = Task(name=name or "gather")
        if not children:
            out.resolve([])
            return out

        remaining = len(children)

        def _cancel_rest(skip: Task | None) -> None:
            for child in children:
                if child is not skip:
                    child.cancel()

        def _on_child_done(child: Task) -> None:
            nonlocal remaining
            if out.done():
                return
            if child.status != TaskStatus.resolved:
                try:
                    exc = child._settled_exception()
                except InvalidTaskState as e:
                    exc = e
                out.reject(exc)
                _cancel_rest(child)
                return
            remaining -= 1
            if remaining == 0:
                out.resolve([c.result() for c in children])

        def _on_out_done(task: Task) -> None:
            if task.cancelled():
                _cancel_rest(None)

        out.add_done_callback(_on_out_done)
        for child in children:
            child.add_done_callback(_on_child_done)
        return out

    # ---- IO waits ----

    def _wait_io(self, task: CoroutineTask, marker: _WaitIO) -> None:
        fd = marker.sock.fileno()
        if fd < 0:
            task._schedule_step(exc=ConnectionClosed("socket is closed"))
            return

        table = self._readers if marker.event == selectors.EVENT_READ else self._writers
        if fd in table:
            task._schedule_step(exc=RuntimeError(f"another task is already waiting on fd {fd}"))
            return

        timer: Handle | None = None

        def _on_ready() -> None:
            if timer is not None:
                timer.cancel()
            task._schedule_step()

        def _on_timeout() -> None:
            table.pop(fd, None)
            self._update_registration(fd)
            task._schedule_step(exc=IOTimeout(f"no IO readiness on fd {fd} within {marker.timeout}s"))

        def _cleanup() -> None:
            if timer is not None:
                timer.cancel()
            if table.pop(fd, None) is not None:
                self._update_registration(fd)

        table[fd] = _on_ready
        self._update_registration(fd)
        if marker.timeout is not None:
            timer = self.call_later(marker.timeout, _on_timeout)
        task._cleanup_wait = _cleanup

    def _update_registration(self, fd: int) -> None:
        mask = (selectors.EVENT_READ if fd in self._readers else 0) | (selectors.EVENT_WRITE if fd in self._writers else 0)
        try:
            key: selectors.SelectorKey | None = self._selector.get_key(fd)
        except KeyError:
            key = None

        if mask == 0:
            if key is not None:
                self._selector.unregister(fd)
        elif key is None:
            self._selector.register(fd, mask)
        elif key.events != mask:
            self._selector.modify(fd, mask)

    # ---- driving ----

    def has_pending_work(self) -> bool:
        return bool(
            self._ready
            or self._threadsafe
            or any(not h.cancelled for _, _, h in self._timers)
            or self._readers
            or self._writers
            or self._threads_in_flight
        )

    def tick(self, max_wait: float | None = 0.0) -> int:
        """Run one scheduling step and return how many callbacks ran.

        `max_wait` bounds how long the selector may block when nothing is ready;
        `None` means until the next timer or IO event. A game frame passes 0.
        """

        self._check_open()
        if self._ticking:
            raise RuntimeError("tick() is not re-entrant")
        self._ticking = True
        try:
            self._move_threadsafe()

            timeout = max_wait
            if self._ready:
                timeout = 0.0
            elif self._timers:
                until_next = max(0.0, self._timers[0][0] - self._clock())
                timeout = until_next if timeout is None else min(timeout, until_next)

            for key, mask in self._selector.select(timeout):
                if key.data is _WAKE:
                    self._drain_wake()
                    continue
                fd = key.fd
                if mask & selectors.EVENT_READ and (cb := self._readers.pop(fd, None)) is not None:
                    cb()
                if mask & selectors.EVENT_WRITE and (cb := self._writers.pop(fd, None)) is not None:
                    cb()
                self._update_registration(fd)

            self._move_threadsafe()

            now = self._clock()
            while self._timers and self._timers[0][0] <= now:
                _, _, handle = heapq.heappop(self._timers)
                if not handle.cancelled:
                    self._ready.append(handle)

            # Only what was ready at this point runs now; anything scheduled meanwhile waits a tick.
            ran = 0
            for _ in range(len(self._ready)):
                handle = self._ready.popleft()
                if handle.cancelled:
                    continue
                ran += 1
                try:
                    handle.callback(*handle.args)
                except Exception:
                    logger.exception("Unhandled error in scheduled callback %r", handle)
            return ran
        finally:
            self._ticking = False

    def run_until_complete(self, aw: Task | Awaitable[Any]) -> Any:
        task = aw if isinstance(aw, Task) else self.spawn(aw)  # type: ignore[arg-type]
        while not task.done():
            if not self.has_pending_work():
                raise RuntimeError(f"{task.name} is pending but nothing is left that could settle it")
            self.tick(max_wait=None)
        return task.result()

    def _move_threadsafe(self) -> None:
        if not self._threadsafe:
            return
        with self._threadsafe_lock:
            self._ready.extend(self._threadsafe)
            self._threadsafe.clear()

    def _drain_wake(self) -> None:
        while True:
            try:
                if not self._wake_r.recv(4096):
                    return
            except BlockingIOError:
                return

    # ---- events ----

    def add_listener(self, fn: Callable[[LoopEvent], Any]) -> None:
        self._listeners.append(fn)

    def remove_listener(self, fn: Callable[[LoopEvent], Any]) -> None:
        self._listeners.remove(fn)

    def emit(self, event: LoopEvent) -> None:
        for fn in list(self._listeners):
            try:
                fn(event)
            except Exception:
                logger.exception("event listener %r failed on %s", fn, event.type)

    def _emit_settled(self, task: Task) -> None:
        event_type = {
            TaskStatus.resolved: "TASK_RESOLVED",
            TaskStatus.rejected: "TASK_REJECTED",
            TaskStatus.cancelled: "TASK_CANCELLED",
        }[task.status]
        payload: dict[str, Any] = {"name": task.name}
        if task.status == TaskStatus.rejected:
            payload["error"] = repr(task._exc)
        self.emit(LoopEvent.now(type=event_type, task_id=task.id, payload=payload))  # type: ignore[arg-type]

    # ---- teardown ----

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Scheduler is closed")

    def close(self) -> None:
        with self._threadsafe_lock:
            if self._closed:
                return
            self._closed = True
            self._threadsafe.clear()
            self._wake_r.close()
            self._wake_w.close()
        self._readers.clear()
        self._writers.clear()
        self._ready.clear()
        self._timers.clear()
        self._selector.close()
