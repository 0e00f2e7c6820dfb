from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from mnemo.application.job_events import JobEvent


@runtime_checkable
class EventLogPort(Protocol):
    """
    Sink for job lifecycle events.

    Implementations may log JSON lines or keep events in memory for inspection.
    """

    def append(self, event: JobEvent) -> None:
        """Append one event."""

    def stream(self, job_id: str) -> Iterable[dict]:
        """Events recorded for a job; may be empty depending on the backend."""

    def close(self) -> None:
        """Close underlying resources (optional)."""
