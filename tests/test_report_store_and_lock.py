from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import fakeredis
import pytest

from gameio.api.models import DemoReport, Strategy
from gameio.errors import DemoBusy
from gameio.lock import demo_lock
from gameio.report_store import REPORTS_SET_KEY, get_report, list_reports, save_report


def _report(strategy: Strategy, created_at: datetime) -> DemoReport:
    return DemoReport(
        report_id=uuid4(),
        strategy=strategy,
        created_at=created_at,
        frame_budget_ms=16.667,
        frames=12,
        longest_frame_ms=1.2,
        stalled_frames=0,
        round_trip_ms=201.5,
        bytes_sent=4,
        bytes_echoed=4,
        completed=True,
    )


def test_save_get_and_list(redis_client: fakeredis.FakeRedis) -> None:
    now = datetime.now(tz=UTC)
    old = _report(Strategy.polling, now - timedelta(minutes=5))
    new = _report(Strategy.event_loop, now)
    save_report(r=redis_client, report=old)
    save_report(r=redis_client, report=new)

    assert get_report(r=redis_client, report_id=old.report_id) == old
    assert get_report(r=redis_client, report_id=uuid4()) is None
    assert [rep.report_id for rep in list_reports(r=redis_client)] == [new.report_id, old.report_id]


def test_list_skips_garbage_ids(redis_client: fakeredis.FakeRedis) -> None:
    redis_client.sadd(REPORTS_SET_KEY, "not-a-uuid", str(uuid4()))
    assert list_reports(r=redis_client) == []


def test_lock_is_exclusive_per_strategy(redis_client: fakeredis.FakeRedis) -> None:
    with demo_lock(r=redis_client, strategy="polling"):
        with pytest.raises(DemoBusy):
            with demo_lock(r=redis_client, strategy="polling"):
                pass
        # Other strategies are independent.
        with demo_lock(r=redis_client, strategy="blocking"):
            pass
    assert redis_client.get("lock:demo:polling") is None


def test_lock_release_leaves_foreign_token_alone(redis_client: fakeredis.FakeRedis) -> None:
    with demo_lock(r=redis_client, strategy="threaded"):
        # Simulate TTL expiry followed by another holder taking over.
        redis_client.set("lock:demo:threaded", "someone-else")
    assert redis_client.get("lock:demo:threaded") == "someone-else"
