from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from config.settings import Settings, get_settings
from app.repositories import jobs_repo
from app.services.text_processing import process_text

from .queue import JobQueue, MessageId, QueueMessage, QueueOperationError, build_job_queue

logger = logging.getLogger(__name__)

IDLE = "idle"
COMPLETED = "completed"
ERROR = "error"
JOB_NOT_FOUND = "job_not_found"
ALREADY_TERMINAL = "already_terminal"
MALFORMED_MESSAGE = "malformed_message"
UPDATE_FAILED = "update_failed"


@dataclass(slots=True)
class WorkerResult:
    outcome: str
    job_id: Optional[str] = None
    message_id: Optional[MessageId] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in {IDLE, COMPLETED, ERROR}


def _ack(queue: JobQueue, message: QueueMessage) -> None:
    try:
        if queue.ack(message):
            logger.info("Deleted message %s from queue %s", message.message_id, queue.name)
    except QueueOperationError as exc:
        # The visibility timeout will surface the message again; nothing else to do here.
        logger.error("Failed to delete message %s: %s", message.message_id, exc)


def _preview(text: object) -> str:
    return str(text)[:50]


def process_next_job(
    *,
    queue: JobQueue,
    settings: Settings,
    transform: Callable[[str], str] = process_text,
) -> WorkerResult:
    """Read one message and drive its job to a terminal state.

    Once the job lookup has returned, the message is deleted no matter what
    happens next, so a job that fails the same way every time cannot be
    redelivered forever. Errors raised while reading the queue or looking the
    job up propagate and leave the message for redelivery.
    """
    message = queue.read(settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS)
    if message is None:
        logger.info("No messages in queue %s", queue.name)
        return WorkerResult(outcome=IDLE)

    msg_id = message.message_id
    job_id = message.job_id
    logger.info(
        "Processing message %s for job %s (read %s time(s))",
        msg_id,
        job_id,
        message.read_count,
    )

    if job_id is None:
        logger.warning("Discarding malformed message %s: %s", msg_id, message.payload)
        _ack(queue, message)
        return WorkerResult(
            outcome=MALFORMED_MESSAGE,
            message_id=msg_id,
            error="Message does not reference a job",
        )

    job = jobs_repo.fetch_job(job_id)

    if job is None:
        logger.error("Job %s not found; dropping message %s", job_id, msg_id)
        _ack(queue, message)
        return WorkerResult(outcome=JOB_NOT_FOUND, job_id=job_id, message_id=msg_id, error="Job not found")

    if jobs_repo.is_terminal(job):
        logger.warning("Job %s is already %s; dropping message %s", job_id, job["status"], msg_id)
        _ack(queue, message)
        return WorkerResult(
            outcome=ALREADY_TERMINAL,
            job_id=job_id,
            message_id=msg_id,
            status=str(job["status"]),
            error=f"Job already {job['status']}",
        )

    try:
        jobs_repo.mark_processing(job_id)
    except Exception as exc:
        logger.exception("Failed to update job %s to processing", job_id)
        _ack(queue, message)
        return WorkerResult(
            outcome=UPDATE_FAILED,
            job_id=job_id,
            message_id=msg_id,
            status=str(job["status"]),
            error=f"Failed to update job status: {exc}",
        )

    text_input = str(job["text_input"])
    result: Optional[str] = None
    error_message: Optional[str] = None
    try:
        logger.info("Processing text input: %r...", _preview(text_input))
        result = transform(text_input)
        logger.info("Processing complete. Result: %r...", _preview(result))
    except Exception as exc:
        logger.warning("Processing error for job %s: %s", job_id, exc)
        error_message = str(exc) or exc.__class__.__name__

    final_status = ERROR if error_message is not None else COMPLETED
    try:
        if error_message is not None:
            jobs_repo.mark_error(job_id, error_message)
        else:
            jobs_repo.mark_completed(job_id, result or "")
    except Exception as exc:
        logger.exception("Failed to save result for job %s", job_id)
        _ack(queue, message)
        return WorkerResult(
            outcome=UPDATE_FAILED,
            job_id=job_id,
            message_id=msg_id,
            status="processing",
            error=f"Failed to save job result: {exc}",
        )

    _ack(queue, message)
    logger.info("Job %s finished with status %s", job_id, final_status)
    return WorkerResult(
        outcome=final_status,
        job_id=job_id,
        message_id=msg_id,
        status=final_status,
        error=error_message,
    )


def run_worker_loop(
    *,
    queue: JobQueue,
    settings: Settings,
    stop_after: Optional[int] = None,
) -> None:
    """
    Repeatedly trigger ``process_next_job``, sleeping while the queue is empty.

    Args:
        stop_after: Optional number of messages to handle before exiting (useful for tests).
    """
    handled = 0
    while True:
        try:
            result = process_next_job(queue=queue, settings=settings)
        except Exception:
            # The message, if any, stays hidden until its visibility timeout expires.
            logger.exception("Worker invocation failed")
            time.sleep(settings.JOB_POLL_INTERVAL_SECONDS)
            continue

        if result.outcome == IDLE:
            if stop_after is not None and handled >= stop_after:
                break
            time.sleep(settings.JOB_POLL_INTERVAL_SECONDS)
            continue

        if result.success:
            logger.info("Handled job %s: %s", result.job_id, result.outcome)
        else:
            logger.warning("Dropped message %s: %s (%s)", result.message_id, result.outcome, result.error)

        handled += 1
        if stop_after is not None and handled >= stop_after:
            break


__all__ = [
    "WorkerResult",
    "process_next_job",
    "run_worker_loop",
]


if __name__ == "__main__":
    import signal
    import sys

    from models import configure, init_db

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    env_path = Path(__file__).resolve().parent.parent.parent / ".env"
    load_dotenv(env_path if env_path.exists() else None, override=True)

    def signal_handler(sig, frame):
        logger.info("Received interrupt signal, shutting down gracefully...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    settings = get_settings()
    logger.info("Starting TextJobs worker (queue provider: %s)...", settings.JOB_QUEUE_PROVIDER)
    if settings.JOB_QUEUE_PROVIDER == "inmemory":
        logger.warning("The in-memory queue is not shared with the API process; use 'database' or 'sqs'.")

    try:
        configure(settings.DATABASE_URL)
        init_db()
        worker_queue = build_job_queue(settings)
    except Exception as e:
        logger.error("Failed to initialize worker: %s", e, exc_info=True)
        sys.exit(1)

    try:
        run_worker_loop(queue=worker_queue, settings=settings)
    except KeyboardInterrupt:
        logger.info("Worker stopped by user.")
