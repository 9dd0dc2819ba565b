from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from gameio.errors import InvalidTaskState, TaskCancelled
from gameio.task import Task, TaskFSM, TaskStatus


def test_new_task_is_pending_and_has_no_result() -> None:
    t = Task(name="load-level")
    assert t.status == TaskStatus.pending
    assert not t.done()
    with pytest.raises(InvalidTaskState):
        t.result()
    with pytest.raises(InvalidTaskState):
        t.exception()


def test_resolve_records_value_once() -> None:
    t = Task()
    t.resolve({"hp": 10})
    assert t.status == TaskStatus.resolved
    assert t.result() == {"hp": 10}
    assert t.exception() is None

    with pytest.raises(InvalidTaskState):
        t.resolve("again")
    with pytest.raises(InvalidTaskState):
        t.reject(RuntimeError("late"))
    assert t.result() == {"hp": 10}


def test_reject_reraises_stored_exception() -> None:
    t = Task()
    err = ConnectionResetError("peer went away")
    t.reject(err)
    assert t.status == TaskStatus.rejected
    assert t.exception() is err
    with pytest.raises(ConnectionResetError):
        t.result()


def test_reject_requires_exception_instance() -> None:
    t = Task()
    with pytest.raises(TypeError):
        t.reject("nope")  # type: ignore[arg-type]
    assert t.status == TaskStatus.pending


def test_cancel_only_from_pending() -> None:
    t = Task()
    assert t.cancel("player left") is True
    assert t.cancelled()
    assert t.cancel() is False

    with pytest.raises(TaskCancelled, match="player left"):
        t.result()
    with pytest.raises(TaskCancelled):
        t.exception()

    done = Task()
    done.resolve(1)
    assert done.cancel() is False
    assert done.status == TaskStatus.resolved


def test_done_callbacks_run_once_in_order() -> None:
    t = Task()
    seen: list[str] = []
    t.add_done_callback(lambda _: seen.append("a"))
    t.add_done_callback(lambda _: seen.append("b"))
    t.resolve(None)
    assert seen == ["a", "b"]

    # Late subscribers are told immediately.
    t.add_done_callback(lambda task: seen.append(task.status.value))
    assert seen == ["a", "b", "resolved"]


def test_remove_done_callback_and_failing_callback_does_not_block_others() -> None:
    t = Task()
    seen: list[int] = []

    def boom(_: Task) -> None:
        raise RuntimeError("observer bug")

    def dropped(_: Task) -> None:
        seen.append(-1)

    t.add_done_callback(boom)
    t.add_done_callback(dropped)
    t.add_done_callback(lambda _: seen.append(1))
    assert t.remove_done_callback(dropped) == 1

    t.reject(ValueError("x"))
    assert seen == [1]


def test_fsm_outcomes_are_final() -> None:
    fsm = TaskFSM()
    assert fsm.current_state.value == "pending"
    fsm.send("cancel")
    assert fsm.current_state.value == "cancelled"
    assert fsm.current_state.final

    with pytest.raises(TransitionNotAllowed):
        fsm.send("resolve")


@pytest.mark.parametrize(("event", "state"), [("resolve", "resolved"), ("reject", "rejected"), ("cancel", "cancelled")])
def test_fsm_transitions_are_named_after_task_outcomes(event: str, state: str) -> None:
    fsm = TaskFSM()
    fsm.send(event)
    assert fsm.current_state.value == state
