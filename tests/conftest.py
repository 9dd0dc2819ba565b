from __future__ import annotations

import os
import socket
from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from gameio.api.deps import get_redis
from gameio.echo_server import DelayedEchoServer
from gameio.scheduler import Scheduler


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs (PyCharm/CLI).

    In CI we *don't* auto-load `.env`, so a developer's local GAMEIO_* overrides
    can't change what the suite sees. Opt in with GAMEIO_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("GAMEIO_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def scheduler() -> Generator[Scheduler, None, None]:
    sched = Scheduler()
    yield sched
    sched.close()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sock_pair() -> Generator[tuple[socket.socket, socket.socket], None, None]:
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


@pytest.fixture()
def echo_server() -> Generator[DelayedEchoServer, None, None]:
    with DelayedEchoServer(delay_s=0.15) as server:
        yield server


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis() -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient with Redis swapped for fakeredis."""

    from gameio.main import app

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
