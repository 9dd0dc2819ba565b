from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field


class Strategy(StrEnum):
    blocking = "blocking"
    polling = "polling"
    threaded = "threaded"
    event_loop = "event_loop"


class DemoRequest(BaseModel):
    payload: str = Field("ping", min_length=1, max_length=4096)
    # Server-side latency; defaults to GAMEIO_ECHO_DELAY_MS when omitted.
    delay_ms: int | None = Field(None, ge=0, le=5_000)
    # Frames per second; defaults to GAMEIO_FRAME_RATE when omitted.
    frame_rate: float | None = Field(None, ge=1, le=240)
    max_frames: int = Field(600, ge=1, le=10_000)


class DemoReport(BaseModel):
    report_id: UUID
    strategy: Strategy
    created_at: datetime

    frame_budget_ms: float
    frames: int
    longest_frame_ms: float
    stalled_frames: int

    # None when the reply never arrived within max_frames.
    round_trip_ms: float | None = None
    bytes_sent: int
    bytes_echoed: int
    completed: bool


class DemoListResponse(BaseModel):
    reports: list[DemoReport]
