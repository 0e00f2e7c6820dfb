from __future__ import annotations

import logging
from typing import Iterable, Optional

from mnemo.application.job_events import JobEvent
from mnemo.application.ports.event_log_port import EventLogPort


class LoggingEventLog(EventLogPort):
    """Emit job events as JSON lines to the Python logger."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self._logger = logger or logging.getLogger("mnemo.jobs")
        self._level = level

    def append(self, event: JobEvent) -> None:
        self._logger.log(self._level, event.to_json())

    def stream(self, job_id: str) -> Iterable[dict]:
        # Logging backend cannot stream retrospectively.
        return iter(())

    def close(self) -> None:
        return None
