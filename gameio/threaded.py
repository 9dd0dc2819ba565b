from __future__ import annotations

import logging
import queue
import threading

from gameio.connection import Connection, IOMode
from gameio.errors import InvalidMode, IOTimeout

logger = logging.getLogger(__name__)

# Queue item meaning "the peer closed the stream".
_EOF = None


class ThreadedReader:
    """Blocking reads on a background thread, drained by the game thread each frame.

    Contract:
      - the reader thread is the only one touching the connection after `start()`.
      - the game thread only calls `poll()`; it never blocks.
      - a failure on the reader thread is re-raised by the next `poll()` (and every one after it).
    """

    def __init__(self, conn: Connection, *, chunk_size: int = 4096, name: str | None = None) -> None:
        if conn.mode != IOMode.blocking:
            raise InvalidMode(f"ThreadedReader needs a blocking connection, got {conn.mode.value}")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._conn = conn
        self._chunk_size = chunk_size
        self._name = name or f"gameio-reader-{conn.fileno()}"
        self._queue: queue.Queue[bytes | Exception | None] = queue.Queue()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._eof = False
        self._error: Exception | None = None

    @property
    def eof(self) -> bool:
        """True once end of stream was seen and every chunk before it was polled."""

        return self._eof

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("ThreadedReader already started")
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 1.0) -> None:
        self._stopping.set()
        self._conn.shutdown_read()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        try:
            while not self._stopping.is_set():
                try:
                    data = self._conn.recv(self._chunk_size)
                except IOTimeout:
                    # Connection timeout doubles as a stop-flag check interval.
                    continue
                if not data:
                    self._queue.put(_EOF)
                    return
                self._queue.put(data)
        except Exception as e:
            if self._stopping.is_set():
                logger.debug("reader %s stopped: %s", self._name, e)
                return
            logger.warning("reader %s failed: %r", self._name, e)
            self._queue.put(e)

    def poll(self) -> list[bytes]:
        if self._error is not None:
            raise self._error

        chunks: list[bytes] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _EOF:
                self._eof = True
                break
            if isinstance(item, Exception):
                self._error = item
                if chunks:
                    # Hand over what arrived before the failure; raise on the next poll.
                    break
                raise item
            chunks.append(item)
        return chunks
