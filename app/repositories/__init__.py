"""Database repository helpers for TextJobs."""

from .jobs_repo import (
    JobTransitionError,
    fetch_job,
    insert_queued,
    is_terminal,
    mark_completed,
    mark_error,
    mark_processing,
)
from .webhook_events_repo import list_events, save_event

__all__ = [
    "JobTransitionError",
    "fetch_job",
    "insert_queued",
    "is_terminal",
    "mark_completed",
    "mark_error",
    "mark_processing",
    "list_events",
    "save_event",
]
