from __future__ import annotations

import datetime
from typing import Optional

from models import (
    TERMINAL_JOB_STATUSES,
    create_job,
    get_job_by_id,
    update_job_status,
    utcnow,
)

# Allowed source states for each target state. "processing" accepts itself so
# a message redelivered after a crashed worker can pick the job up again.
_ALLOWED_FROM: dict[str, tuple[str, ...]] = {
    "processing": ("queued", "processing"),
    "completed": ("processing",),
    "error": ("processing",),
}


class JobTransitionError(RuntimeError):
    """Raised when a job cannot move to the requested status."""


def is_terminal(job: dict[str, object]) -> bool:
    return job.get("status") in TERMINAL_JOB_STATUSES


def insert_queued(text_input: str) -> dict[str, object]:
    """Insert a job in the queued state."""
    return create_job(text_input)


def fetch_job(job_id: str) -> Optional[dict[str, object]]:
    """Return the job row for the identifier, if any."""
    return get_job_by_id(job_id)


def _transition(job_id: str, status: str, **fields) -> None:
    updated = update_job_status(job_id, status, from_statuses=_ALLOWED_FROM[status], **fields)
    if not updated:
        current = get_job_by_id(job_id)
        if current is None:
            raise JobTransitionError(f"Job {job_id} no longer exists.")
        raise JobTransitionError(
            f"Job {job_id} cannot move from {current['status']} to {status}."
        )


def mark_processing(job_id: str) -> None:
    """Set job status to processing."""
    _transition(job_id, "processing")


def mark_completed(
    job_id: str,
    result: str,
    *,
    processed_at: Optional[datetime.datetime] = None,
) -> None:
    """Store the result and set job status to completed."""
    timestamp = processed_at or utcnow()
    _transition(job_id, "completed", result=result, processed_at=timestamp, updated_at=timestamp)


def mark_error(
    job_id: str,
    error_message: str,
    *,
    processed_at: Optional[datetime.datetime] = None,
) -> None:
    """Store the error message and set job status to error."""
    timestamp = processed_at or utcnow()
    _transition(
        job_id,
        "error",
        error_message=error_message,
        processed_at=timestamp,
        updated_at=timestamp,
    )
