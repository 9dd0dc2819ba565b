from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "TASK_SPAWNED",
    "TASK_RESOLVED",
    "TASK_REJECTED",
    "TASK_CANCELLED",
    "FRAME_STALLED",
]


@dataclass(frozen=True, slots=True)
class LoopEvent:
    type: EventType
    task_id: str
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, task_id: str = "", payload: dict[str, Any] | None = None) -> "LoopEvent":
        return LoopEvent(type=type, task_id=task_id, payload=payload or {}, ts=datetime.now(timezone.utc))

    def as_fields(self) -> dict[str, str]:
        """Flatten to string-only fields (Redis Streams friendly)."""

        fields = {str(k): str(v) for k, v in self.payload.items()}
        # Envelope keys win over payload keys of the same name.
        fields.update({"type": self.type, "task_id": self.task_id, "ts": self.ts.isoformat()})
        return fields
