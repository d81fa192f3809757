"""Job queue and worker utilities for TextJobs."""

from .queue import (
    DatabaseQueue,
    InMemoryQueue,
    JobQueue,
    QueueConfigurationError,
    QueueMessage,
    QueueOperationError,
    SQSQueue,
    build_job_queue,
)
from .worker import WorkerResult, process_next_job, run_worker_loop

__all__ = [
    "DatabaseQueue",
    "InMemoryQueue",
    "JobQueue",
    "QueueConfigurationError",
    "QueueMessage",
    "QueueOperationError",
    "SQSQueue",
    "build_job_queue",
    "WorkerResult",
    "process_next_job",
    "run_worker_loop",
]
