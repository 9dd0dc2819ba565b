from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_FRAME_RATE = 60.0
DEFAULT_ECHO_DELAY_MS = 200
DEFAULT_TRACE_STREAM = "gameio:trace"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str = DEFAULT_REDIS_URL
    # Engine tick rate used by demos when the caller doesn't pick one.
    frame_rate: float = DEFAULT_FRAME_RATE
    # Artificial server latency for the echo server.
    echo_delay_ms: int = DEFAULT_ECHO_DELAY_MS
    trace_stream: str = DEFAULT_TRACE_STREAM
    log_level: str = DEFAULT_LOG_LEVEL


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)


def load_settings() -> Settings:
    """Build settings from the environment.

    Unset variables keep the module defaults.
    """

    frame_rate = float(os.environ.get("GAMEIO_FRAME_RATE", DEFAULT_FRAME_RATE))
    if frame_rate <= 0:
        raise ValueError("GAMEIO_FRAME_RATE must be positive")

    return Settings(
        redis_url=get_redis_url(),
        frame_rate=frame_rate,
        echo_delay_ms=int(os.environ.get("GAMEIO_ECHO_DELAY_MS", DEFAULT_ECHO_DELAY_MS)),
        trace_stream=os.environ.get("GAMEIO_TRACE_STREAM", DEFAULT_TRACE_STREAM),
        log_level=os.environ.get("GAMEIO_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
    )
