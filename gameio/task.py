from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from enum import StrEnum
from typing import Any
from uuid import uuid4

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from gameio.errors import InvalidTaskState, TaskCancelled

logger = logging.getLogger(__name__)


class TaskStatus(StrEnum):
    pending = "pending"
    resolved = "resolved"
    rejected = "rejected"
    cancelled = "cancelled"


class TaskFSM(StateMachine):
    """Guards a task's lifecycle: pending -> resolved | rejected | cancelled.

    All three outcomes are final; the FSM refuses any second settlement.
    """

    pending = State(TaskStatus.pending.value, value=TaskStatus.pending.value, initial=True)
    resolved = State(TaskStatus.resolved.value, value=TaskStatus.resolved.value, final=True)
    rejected = State(TaskStatus.rejected.value, value=TaskStatus.rejected.value, final=True)
    cancelled = State(TaskStatus.cancelled.value, value=TaskStatus.cancelled.value, final=True)

    resolve = pending.to(resolved)
    reject = pending.to(rejected)
    cancel = pending.to(cancelled)


DoneCallback = Callable[["Task"], Any]


class Task:
    """Handle on the eventual result of an operation.

    Plain tasks are settled by whoever owns the operation (`resolve`, `reject`, `cancel`).
    Inside a scheduler coroutine a task can be awaited: `value = await task`.
    """

    def __init__(self, *, name: str | None = None) -> None:
        self.id = uuid4().hex[:12]
        self.name = name or f"task-{self.id}"
        self._fsm = TaskFSM()
        self._value: Any = None
        self._exc: BaseException | None = None
        self._callbacks: list[DoneCallback] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.status.value}>"

    @property
    def status(self) -> TaskStatus:
        return TaskStatus(str(self._fsm.current_state.value))

    def done(self) -> bool:
        return self.status != TaskStatus.pending

    def cancelled(self) -> bool:
        return self.status == TaskStatus.cancelled

    # ---- settlement ----

    def resolve(self, value: Any = None) -> None:
        self._set_result(value)

    def reject(self, exc: BaseException) -> None:
        if not isinstance(exc, BaseException):
            raise TypeError(f"reject() needs an exception instance, got {type(exc).__name__}")
        self._set_exception(exc)

    def cancel(self, msg: str | None = None) -> bool:
        """Cancel a pending task. Returns False if it had already settled."""

        if self.done():
            return False
        self._set_cancelled(msg)
        return True

    def _transition(self, event: str) -> None:
        try:
            self._fsm.send(event)
        except TransitionNotAllowed as e:
            raise InvalidTaskState(f"{self.name} is already {self.status.value}") from e

    def _set_result(self, value: Any) -> None:
        self._transition("resolve")
        self._value = value
        logger.debug("task %s resolved", self.name)
        self._run_callbacks()

    def _set_exception(self, exc: BaseException) -> None:
        self._transition("reject")
        self._exc = exc
        logger.debug("task %s rejected: %r", self.name, exc)
        self._run_callbacks()

    def _set_cancelled(self, msg: str | None = None, exc: TaskCancelled | None = None) -> None:
        self._transition("cancel")
        self._exc = exc or TaskCancelled(msg or f"{self.name} was cancelled")
        logger.debug("task %s cancelled", self.name)
        self._run_callbacks()

    # ---- outcome ----

    def result(self) -> Any:
        status = self.status
        if status == TaskStatus.pending:
            raise InvalidTaskState(f"{self.name} has no result yet")
        if status == TaskStatus.resolved:
            return self._value
        raise self._settled_exception()

    def exception(self) -> BaseException | None:
        """The exception a rejected task settled with; None when it resolved.

        A cancelled task raises its `TaskCancelled` instead of returning it.
        """

        status = self.status
        if status == TaskStatus.pending:
            raise InvalidTaskState(f"{self.name} has no outcome yet")
        if status == TaskStatus.cancelled:
            raise self._settled_exception()
        return self._exc

    def _settled_exception(self) -> BaseException:
        if self._exc is None:
            raise InvalidTaskState(f"{self.name} is {self.status.value} but recorded no exception")
        return self._exc

    # ---- callbacks ----

    def add_done_callback(self, fn: DoneCallback) -> None:
        if self.done():
            self._invoke(fn)
            return
        self._callbacks.append(fn)

    def remove_done_callback(self, fn: DoneCallback) -> int:
        before = len(self._callbacks)
        self._callbacks = [cb for cb in self._callbacks if cb != fn]
        return before - len(self._callbacks)

    def _run_callbacks(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            self._invoke(fn)

    def _invoke(self, fn: DoneCallback) -> None:
        try:
            fn(self)
        except Exception:
            # Remaining callbacks still run.
            logger.exception("done callback %r failed for %s", fn, self.name)

    def __await__(self) -> Generator[Any, Any, Any]:
        if not self.done():
            # The scheduler parks the awaiting coroutine until this task settles.
            yield self
        return self.result()
