from __future__ import annotations

from dataclasses import dataclass
from typing import cast

import redis

from gameio.events import LoopEvent


@dataclass(slots=True)
class RedisTraceSink:
    """Scheduler/frame-loop listener that appends every LoopEvent to a Redis Stream."""

    r: redis.Redis
    stream_key: str
    # Approximate cap so a long-running demo box doesn't grow the stream forever.
    maxlen: int = 10_000

    def __call__(self, event: LoopEvent) -> str:
        # redis-py stubs expect field/value unions; we only ever write strings.
        stream_id = self.r.xadd(self.stream_key, event.as_fields(), maxlen=self.maxlen, approximate=True)  # type: ignore[arg-type]
        return cast(str, stream_id)


def read_trace(*, r: redis.Redis, stream_key: str, count: int = 50) -> list[tuple[str, dict[str, str]]]:
    """Latest `count` trace entries, oldest first."""

    entries = r.xrevrange(stream_key, count=count)
    return [(cast(str, mid), cast(dict[str, str], fields)) for mid, fields in reversed(entries)]  # type: ignore[arg-type]
