from .cancellation import CancellationRegistry, CancellationToken, cancellation_key
from .dedup import DuplicateMatch, PendingJob, find_duplicate_job, find_duplicate_memory
from .lease import JobLease
from .queue import EnqueueResult, IngestionQueue, QueueCounts, QueueStatus
from .worker import BackgroundTasks, IngestionJob, IngestionOutcome, IngestionStatus, IngestionWorker

__all__ = [
    "CancellationRegistry",
    "CancellationToken",
    "cancellation_key",
    "DuplicateMatch",
    "PendingJob",
    "find_duplicate_job",
    "find_duplicate_memory",
    "JobLease",
    "EnqueueResult",
    "IngestionQueue",
    "QueueCounts",
    "QueueStatus",
    "BackgroundTasks",
    "IngestionJob",
    "IngestionOutcome",
    "IngestionStatus",
    "IngestionWorker",
]
