from __future__ import annotations

import time
from contextlib import contextmanager
from uuid import uuid4

import redis

from gameio.errors import DemoBusy


@contextmanager
def demo_lock(*, r: redis.Redis, strategy: str, ttl_ms: int = 30_000):
    """One demo run per strategy at a time.

    The token check on release keeps a run that outlived its TTL from
    deleting a newer holder's lock (check-then-delete, not atomic).
    """

    key = f"lock:demo:{strategy}"
    token = uuid4().hex
    acquired = r.set(key, token, nx=True, px=ttl_ms)
    if not acquired:
        raise DemoBusy(f"A {strategy} demo is already running")
    try:
        yield
    finally:
        if r.get(key) == token:
            r.delete(key)
        # small yield to avoid tight contention in tests
        time.sleep(0)
