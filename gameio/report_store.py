from __future__ import annotations

from uuid import UUID

import redis

from gameio.api.models import DemoReport


REPORTS_SET_KEY = "gameio:reports"
REPORT_KEY_PREFIX = "gameio:report:"  # + {uuid}


def _report_key(report_id: UUID) -> str:
    return f"{REPORT_KEY_PREFIX}{report_id}"


def save_report(*, r: redis.Redis, report: DemoReport) -> None:
    # redis-py is synchronous; explicit alias helps some IDEs avoid thinking these are coroutines.
    r_sync = r  # type: ignore[assignment]
    r_sync.set(_report_key(report.report_id), report.model_dump_json())
    r_sync.sadd(REPORTS_SET_KEY, str(report.report_id))


def get_report(*, r: redis.Redis, report_id: UUID) -> DemoReport | None:
    raw = r.get(_report_key(report_id))
    if not raw:
        return None
    return DemoReport.model_validate_json(raw)


def list_reports(*, r: redis.Redis) -> list[DemoReport]:
    ids = sorted(r.smembers(REPORTS_SET_KEY))
    out: list[DemoReport] = []
    for sid in ids:
        try:
            rid = UUID(sid)
        except ValueError:
            continue
        report = get_report(r=r, report_id=rid)
        if report is not None:
            out.append(report)
    out.sort(key=lambda rep: rep.created_at, reverse=True)
    return out
