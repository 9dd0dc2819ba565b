from __future__ import annotations

import logging
import socket
from enum import StrEnum

from gameio.errors import ConnectionClosed, InvalidMode, IOTimeout
from gameio.scheduler import wait_readable, wait_writable

logger = logging.getLogger(__name__)


class IOMode(StrEnum):
    blocking = "blocking"
    nonblocking = "nonblocking"
    asynchronous = "asynchronous"


def _check_size(n: int) -> None:
    if n <= 0:
        raise ValueError("read size must be positive")


class Connection:
    """A TCP socket used in exactly one of three IO styles.

    - blocking: `recv`/`recv_exactly`/`send_all` suspend the calling thread.
    - nonblocking: `poll_recv` returns None when nothing is there yet;
      `queue_send` + `flush` push bytes out as the socket accepts them.
    - asynchronous: `*_async` coroutines suspend only the calling task on a Scheduler.

    `timeout` (seconds) bounds each blocking call or async wait; it does not apply to polling.
    """

    def __init__(self, sock: socket.socket, *, mode: IOMode | str = IOMode.blocking, timeout: float | None = None) -> None:
        self._sock = sock
        self.mode = IOMode(mode)
        self.timeout = timeout
        self.eof = False
        self._closed = False
        self._outbox = bytearray()

        if self.mode == IOMode.blocking:
            sock.settimeout(timeout)
        else:
            sock.setblocking(False)

    @classmethod
    def open(cls, host: str, port: int, *, mode: IOMode | str = IOMode.blocking, timeout: float | None = None) -> "Connection":
        """Connect (always a blocking connect), then switch to the requested mode."""

        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except TimeoutError as e:
            raise IOTimeout(f"connect to {host}:{port} timed out after {timeout}s") from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.debug("connected to %s:%s (%s)", host, port, mode)
        return cls(sock, mode=mode, timeout=timeout)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else self.mode.value
        return f"<Connection fd={self._sock.fileno()} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def peer(self) -> tuple[str, int] | None:
        if self._closed:
            return None
        return self._sock.getpeername()

    @property
    def pending_send(self) -> int:
        return len(self._outbox)

    def fileno(self) -> int:
        return self._sock.fileno()

    def _require(self, mode: IOMode, op: str) -> None:
        if self._closed:
            raise ConnectionClosed(f"{op}() on a closed connection")
        if self.mode != mode:
            raise InvalidMode(f"{op}() needs a {mode.value} connection, this one is {self.mode.value}")

    # ---- blocking ----

    def recv(self, n: int) -> bytes:
        self._require(IOMode.blocking, "recv")
        _check_size(n)
        try:
            data = self._sock.recv(n)
        except TimeoutError as e:
            raise IOTimeout(f"recv timed out after {self.timeout}s") from e
        if not data:
            self.eof = True
        return data

    def recv_exactly(self, n: int) -> bytes:
        self._require(IOMode.blocking, "recv_exactly")
        _check_size(n)
        buf = bytearray()
        while len(buf) < n:
            chunk = self.recv(n - len(buf))
            if not chunk:
                raise ConnectionClosed(f"peer closed after {len(buf)} of {n} bytes")
            buf += chunk
        return bytes(buf)

    def send_all(self, data: bytes) -> None:
        self._require(IOMode.blocking, "send_all")
        try:
            self._sock.sendall(data)
        except TimeoutError as e:
            raise IOTimeout(f"send timed out after {self.timeout}s") from e

    # ---- nonblocking (polling) ----

    def poll_recv(self, n: int) -> bytes | None:
        """Read whatever is available. None: nothing yet. b"": the peer closed."""

        self._require(IOMode.nonblocking, "poll_recv")
        _check_size(n)
        try:
            data = self._sock.recv(n)
        except BlockingIOError:
            return None
        if not data:
            self.eof = True
        return data

    def queue_send(self, data: bytes) -> None:
        self._require(IOMode.nonblocking, "queue_send")
        self._outbox += data

    def flush(self) -> bool:
        """Write as much of the outbox as the socket takes. True once it is empty."""

        self._require(IOMode.nonblocking, "flush")
        while self._outbox:
            try:
                sent = self._sock.send(self._outbox)
            except BlockingIOError:
                return False
            del self._outbox[:sent]
        return True

    # ---- asynchronous ----

    async def recv_async(self, n: int) -> bytes:
        self._require(IOMode.asynchronous, "recv_async")
        _check_size(n)
        while True:
            try:
                data = self._sock.recv(n)
            except BlockingIOError:
                await wait_readable(self._sock, self.timeout)
                continue
            if not data:
                self.eof = True
            return data

    async def recv_exactly_async(self, n: int) -> bytes:
        self._require(IOMode.asynchronous, "recv_exactly_async")
        _check_size(n)
        buf = bytearray()
        while len(buf) < n:
            chunk = await self.recv_async(n - len(buf))
            if not chunk:
                raise ConnectionClosed(f"peer closed after {len(buf)} of {n} bytes")
            buf += chunk
        return bytes(buf)

    async def send_all_async(self, data: bytes) -> None:
        self._require(IOMode.asynchronous, "send_all_async")
        view = memoryview(data)
        while view:
            try:
                sent = self._sock.send(view)
            except BlockingIOError:
                await wait_writable(self._sock, self.timeout)
                continue
            view = view[sent:]

    # ---- teardown ----

    def shutdown_read(self) -> None:
        """Half-close for reading; wakes a thread blocked in `recv`."""

        if self._closed:
            return
        try:
            self._sock.shutdown(socket.SHUT_RD)
        except OSError as e:
            # Already disconnected; the reader will see EOF or an error on its own.
            logger.debug("shutdown_read ignored: %s", e)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.clear()
        self._sock.close()
