"""Validation and submission of new text jobs."""

from __future__ import annotations

import logging

from config.settings import Settings
from app.jobs.queue import JobQueue
from app.repositories import jobs_repo

logger = logging.getLogger(__name__)


class JobValidationError(ValueError):
    """Raised when submitted text is rejected before any job is created."""


class JobSubmissionError(RuntimeError):
    """Raised when the job store or queue fails during submission."""


def validate_text(raw: object, *, max_length: int = 10000) -> str:
    """Return the trimmed text or raise ``JobValidationError``.

    Checks run in order: missing, not a string, empty after trimming, too long.
    """
    if raw is None or raw == "" or (isinstance(raw, (int, float)) and not raw):
        raise JobValidationError("Text is required")
    if not isinstance(raw, str):
        raise JobValidationError("Text must be a string")

    trimmed = raw.strip()
    if not trimmed:
        raise JobValidationError("Text cannot be empty")
    if len(trimmed) > max_length:
        raise JobValidationError(f"Text exceeds maximum length of {max_length} characters")
    return trimmed


def submit_job(raw: object, *, queue: JobQueue, settings: Settings) -> dict[str, object]:
    """Create a queued job for ``raw`` and enqueue a reference to it.

    The row is inserted before the message is sent so a worker can never see
    a message for a job that does not exist yet. If the enqueue fails the row
    is left behind in the queued state.
    """
    text_input = validate_text(raw, max_length=settings.MAX_TEXT_LENGTH)

    try:
        job = jobs_repo.insert_queued(text_input)
    except Exception as exc:
        logger.exception("Failed to create job")
        raise JobSubmissionError("Failed to create job") from exc

    job_id = str(job["id"])
    try:
        queue.enqueue(job_id)
    except Exception as exc:
        # TODO: add a sweep that re-enqueues jobs stuck in queued with no message.
        logger.error(
            "Job %s was created but could not be enqueued; it will stay queued: %s",
            job_id,
            exc,
            exc_info=True,
        )
        raise JobSubmissionError(f"Failed to enqueue job {job_id}") from exc

    logger.info("Submitted job %s (%s chars)", job_id, len(text_input))
    return {"jobId": job_id, "status": job["status"]}
