from __future__ import annotations


class InvalidTaskState(ValueError):
    """Raised when a Task is asked for something its current state can't give."""


class TaskCancelled(Exception):
    """Thrown into a coroutine at its await point when its task is cancelled.

    Not related to `asyncio.CancelledError`: the scheduler here is not asyncio.
    """


class InvalidMode(ValueError):
    """A Connection operation was called in the wrong IO mode."""


class ConnectionClosed(ConnectionError):
    pass


class IOTimeout(TimeoutError):
    pass


class DemoBusy(ValueError):
    pass
