from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List

from mnemo.application.job_events import JobEvent
from mnemo.application.ports.event_log_port import EventLogPort


class InMemoryEventLog(EventLogPort):
    """Keeps events per job id; used by tests and the in-process dev setup."""

    def __init__(self) -> None:
        self._events: Dict[str, List[JobEvent]] = defaultdict(list)

    def append(self, event: JobEvent) -> None:
        self._events[event.job_id].append(event)

    def stream(self, job_id: str) -> Iterable[dict]:
        return [e.to_dict() for e in self._events.get(job_id, [])]

    def stages(self, job_id: str) -> List[str]:
        return [e.stage.value for e in self._events.get(job_id, [])]

    def close(self) -> None:
        self._events.clear()
