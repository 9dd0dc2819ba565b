from __future__ import annotations

import socket

import pytest

from gameio.connection import Connection, IOMode
from gameio.echo_server import DelayedEchoServer
from gameio.errors import ConnectionClosed, InvalidMode, IOTimeout
from gameio.scheduler import Scheduler


def test_blocking_roundtrip_through_echo_server(echo_server: DelayedEchoServer) -> None:
    with Connection.open(*echo_server.address, mode=IOMode.blocking, timeout=2.0) as conn:
        assert conn.peer is not None
        conn.send_all(b"hello")
        assert conn.recv_exactly(5) == b"hello"


def test_blocking_recv_times_out(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, _ = sock_pair
    conn = Connection(a, mode=IOMode.blocking, timeout=0.05)
    with pytest.raises(IOTimeout):
        conn.recv(4)


def test_blocking_eof_and_short_read(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, b = sock_pair
    conn = Connection(a, mode="blocking", timeout=1.0)
    b.sendall(b"ab")
    b.close()

    with pytest.raises(ConnectionClosed, match="2 of 4"):
        conn.recv_exactly(4)
    assert conn.recv(4) == b""
    assert conn.eof


def test_polling_returns_none_until_data(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, b = sock_pair
    conn = Connection(a, mode=IOMode.nonblocking)

    assert conn.poll_recv(16) is None
    b.sendall(b"tick")
    assert conn.poll_recv(16) == b"tick"

    b.close()
    assert conn.poll_recv(16) == b""
    assert conn.eof


def test_polling_queue_send_and_flush(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, b = sock_pair
    conn = Connection(a, mode=IOMode.nonblocking)

    conn.queue_send(b"move:")
    conn.queue_send(b"north")
    assert conn.pending_send == 10
    assert conn.flush() is True
    assert conn.pending_send == 0
    assert b.recv(64) == b"move:north"


def test_flush_reports_backpressure(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, _ = sock_pair
    conn = Connection(a, mode=IOMode.nonblocking)

    # Nobody reads the other end, so the kernel buffer fills up.
    conn.queue_send(b"x" * (8 * 1024 * 1024))
    assert conn.flush() is False
    assert 0 < conn.pending_send < 8 * 1024 * 1024


def test_async_roundtrip_on_scheduler(echo_server: DelayedEchoServer, scheduler: Scheduler) -> None:
    conn = Connection.open(*echo_server.address, mode=IOMode.asynchronous, timeout=2.0)

    async def talk() -> bytes:
        await conn.send_all_async(b"ready?")
        return await conn.recv_exactly_async(6)

    try:
        assert scheduler.run_until_complete(scheduler.spawn(talk())) == b"ready?"
    finally:
        conn.close()


def test_async_recv_timeout(sock_pair: tuple[socket.socket, socket.socket], scheduler: Scheduler) -> None:
    a, _ = sock_pair
    conn = Connection(a, mode=IOMode.asynchronous, timeout=0.03)

    with pytest.raises(IOTimeout):
        scheduler.run_until_complete(scheduler.spawn(conn.recv_async(8)))


def test_async_recv_exactly_hits_eof(sock_pair: tuple[socket.socket, socket.socket], scheduler: Scheduler) -> None:
    a, b = sock_pair
    conn = Connection(a, mode=IOMode.asynchronous)
    b.sendall(b"abc")
    b.close()

    with pytest.raises(ConnectionClosed):
        scheduler.run_until_complete(scheduler.spawn(conn.recv_exactly_async(10)))


@pytest.mark.parametrize(
    ("mode", "call"),
    [
        (IOMode.blocking, lambda c: c.poll_recv(1)),
        (IOMode.nonblocking, lambda c: c.recv(1)),
        (IOMode.nonblocking, lambda c: c.send_all(b"x")),
        (IOMode.asynchronous, lambda c: c.queue_send(b"x")),
    ],
)
def test_wrong_mode_is_rejected(sock_pair: tuple[socket.socket, socket.socket], mode: IOMode, call) -> None:  # type: ignore[no-untyped-def]
    a, _ = sock_pair
    conn = Connection(a, mode=mode)
    with pytest.raises(InvalidMode):
        call(conn)


def test_closed_connection_and_bad_sizes(sock_pair: tuple[socket.socket, socket.socket]) -> None:
    a, _ = sock_pair
    conn = Connection(a, mode=IOMode.blocking)
    with pytest.raises(ValueError):
        conn.recv(0)

    conn.close()
    conn.close()
    assert conn.closed
    assert conn.peer is None
    with pytest.raises(ConnectionClosed):
        conn.recv(1)


def test_unknown_mode_string() -> None:
    with socket.socket() as s:
        with pytest.raises(ValueError):
            Connection(s, mode="telepathic")
