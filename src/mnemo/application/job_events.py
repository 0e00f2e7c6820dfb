"""
Typed lifecycle events for ingestion and search jobs.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return str(uuid.uuid4())


class JobStage(str, Enum):
    RECEIVED = "received"
    CANCELLATION_CHECK = "cancellation_check"
    DUPLICATE_CHECK = "duplicate_check"
    MERGED = "merged"
    EXTRACTING = "extracting"
    PERSISTED = "persisted"
    BACKGROUND = "background"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    RECOVERED = "recovered"


@dataclass
class JobEvent:
    """One state transition of a job."""

    job_id: str
    stage: JobStage
    kind: str = "ingestion"
    user_id: Optional[str] = None
    attempt: int = 1
    ts: datetime = field(default_factory=utcnow)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "stage": self.stage.value,
            "kind": self.kind,
            "user_id": self.user_id,
            "attempt": self.attempt,
            "ts": self.ts.isoformat(),
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


def make_job_event(
    job_id: str,
    stage: JobStage,
    *,
    user_id: Optional[str] = None,
    attempt: int = 1,
    kind: str = "ingestion",
    **payload: Any,
) -> JobEvent:
    return JobEvent(
        job_id=job_id,
        stage=stage,
        kind=kind,
        user_id=user_id,
        attempt=attempt,
        payload=payload,
    )
