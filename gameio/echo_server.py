from __future__ import annotations

import logging
import socket
import threading

logger = logging.getLogger(__name__)


class DelayedEchoServer:
    """Thread-per-connection TCP echo server that waits `delay_s` before each reply.

    Stands in for a slow game backend. Use it as a context manager:

        with DelayedEchoServer(delay_s=0.2) as server:
            host, port = server.address
    """

    def __init__(self, *, delay_s: float = 0.2, host: str = "127.0.0.1", port: int = 0) -> None:
        if delay_s < 0:
            raise ValueError("delay_s must be non-negative")
        self.delay_s = delay_s
        self._host = host
        self._port = port
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            raise RuntimeError("server is not started")
        host, port = self._sock.getsockname()[:2]
        return host, port

    def __enter__(self) -> "DelayedEchoServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        if self._sock is not None:
            raise RuntimeError("server already started")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self._host, self._port))
        sock.listen(16)
        # Short accept timeout so stop() is noticed promptly.
        sock.settimeout(0.05)
        self._sock = sock
        self._thread = threading.Thread(target=self._serve, args=(sock,), name="gameio-echo", daemon=True)
        self._thread.start()
        logger.info("echo server listening on %s:%s (delay %.3fs)", *self.address, self.delay_s)

    def stop(self) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _serve(self, sock: socket.socket) -> None:
        while not self._stopping.is_set():
            try:
                client, addr = sock.accept()
            except TimeoutError:
                continue
            client.settimeout(None)
            threading.Thread(target=self._handle, args=(client, addr), name=f"gameio-echo-{addr[1]}", daemon=True).start()

    def _handle(self, client: socket.socket, addr: tuple[str, int]) -> None:
        with client:
            try:
                while not self._stopping.is_set():
                    data = client.recv(4096)
                    if not data:
                        return
                    if self._stopping.wait(self.delay_s):
                        return
                    client.sendall(data)
            except OSError as e:
                # Clients routinely hang up mid-reply in the demos.
                logger.debug("echo client %s dropped: %s", addr, e)
