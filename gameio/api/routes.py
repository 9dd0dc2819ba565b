from __future__ import annotations

import math
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
import redis

from gameio.api.deps import get_redis
from gameio.api.models import DemoListResponse, DemoReport, DemoRequest, Strategy
from gameio.config import load_settings
from gameio.demos import run_strategy
from gameio.echo_server import DelayedEchoServer
from gameio.errors import DemoBusy
from gameio.lock import demo_lock
from gameio.report_store import get_report, list_reports, save_report
from gameio.streams import RedisTraceSink, read_trace

router = APIRouter()

DEMO_TIMEOUT_S = 5.0


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# Plain `def`: a demo deliberately blocks (that's the point of the blocking strategy),
# so FastAPI runs it on its threadpool instead of the server's event loop.
@router.post("/demos/{strategy}", response_model=DemoReport, status_code=status.HTTP_201_CREATED)
def run_demo_route(strategy: Strategy, payload: DemoRequest, r: redis.Redis = Depends(get_redis)) -> DemoReport:
    settings = load_settings()
    delay_ms = payload.delay_ms if payload.delay_ms is not None else settings.echo_delay_ms
    frame_rate = payload.frame_rate if payload.frame_rate is not None else settings.frame_rate
    # Hold the lock for as long as the slowest possible run, plus the IO timeout.
    ttl_ms = math.ceil((payload.max_frames / frame_rate + delay_ms / 1000.0 + DEMO_TIMEOUT_S) * 1000)
    sink = RedisTraceSink(r=r, stream_key=settings.trace_stream)

    try:
        with demo_lock(r=r, strategy=strategy.value, ttl_ms=ttl_ms):
            with DelayedEchoServer(delay_s=delay_ms / 1000.0) as server:
                report = run_strategy(
                    strategy,
                    address=server.address,
                    payload=payload.payload.encode("utf-8"),
                    frame_rate=frame_rate,
                    max_frames=payload.max_frames,
                    timeout_s=DEMO_TIMEOUT_S,
                    listeners=[sink],
                )
    except DemoBusy as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except (ConnectionError, TimeoutError) as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"demo IO failed: {e}") from e

    save_report(r=r, report=report)
    return report


@router.get("/demos", response_model=DemoListResponse)
async def list_demos_route(r: redis.Redis = Depends(get_redis)) -> DemoListResponse:
    return DemoListResponse(reports=list_reports(r=r))


@router.get("/demos/{report_id}", response_model=DemoReport)
async def get_demo_route(report_id: UUID, r: redis.Redis = Depends(get_redis)) -> DemoReport:
    report = get_report(r=r, report_id=report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report


@router.get("/trace")
async def get_trace_route(count: int = 50, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    """Latest scheduler / frame-loop events recorded by demo runs."""

    if count < 1 or count > 500:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 500")

    stream_key = load_settings().trace_stream
    entries = read_trace(r=r, stream_key=stream_key, count=count)
    return {"stream": stream_key, "events": [{"id": mid, "fields": fields} for mid, fields in entries]}
