"""Worker contract tests: lifecycle transitions and unconditional acknowledgment."""
from __future__ import annotations

import uuid

import pytest

from app.jobs.worker import (
    ALREADY_TERMINAL,
    COMPLETED,
    ERROR,
    IDLE,
    JOB_NOT_FOUND,
    MALFORMED_MESSAGE,
    UPDATE_FAILED,
    process_next_job,
    run_worker_loop,
)
from app.repositories import jobs_repo
from app.repositories.jobs_repo import JobTransitionError
from app.services.submission import submit_job
from models import delete_job, get_job_by_id


@pytest.fixture()
def submitted(job_queue, settings):
    def _submit(text: str = "hello world") -> str:
        return str(submit_job(text, queue=job_queue, settings=settings)["jobId"])

    return _submit


def test_empty_queue_is_a_no_op(job_queue, settings):
    result = process_next_job(queue=job_queue, settings=settings)
    assert result.outcome == IDLE
    assert result.success


def test_completes_job_and_acks_message(job_queue, settings, submitted):
    job_id = submitted("hello world")

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == COMPLETED
    assert result.job_id == job_id
    job = get_job_by_id(job_id)
    assert job["status"] == "completed"
    assert job["result"] == "HELLO WORLD"
    assert job["error_message"] is None
    assert job["processed_at"] is not None
    assert job["updated_at"] >= job["created_at"]
    assert len(job_queue) == 0


def test_transformation_failure_is_recorded_as_error(job_queue, settings, submitted):
    job_id = submitted("boom")

    def exploding(text: str) -> str:
        raise ValueError("cannot transform")

    result = process_next_job(queue=job_queue, settings=settings, transform=exploding)

    assert result.outcome == ERROR
    assert result.success
    job = get_job_by_id(job_id)
    assert job["status"] == "error"
    assert job["error_message"] == "cannot transform"
    assert job["result"] is None
    assert job["processed_at"] is not None
    assert len(job_queue) == 0


def test_missing_job_acks_message(job_queue, settings):
    missing_id = str(uuid.uuid4())
    job_queue.enqueue(missing_id)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == JOB_NOT_FOUND
    assert result.job_id == missing_id
    assert not result.success
    assert len(job_queue) == 0


def test_deleted_job_is_not_mutated_or_redelivered(job_queue, settings, submitted):
    job_id = submitted("gone soon")
    delete_job(job_id)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == JOB_NOT_FOUND
    assert get_job_by_id(job_id) is None
    assert process_next_job(queue=job_queue, settings=settings).outcome == IDLE


def test_message_without_job_id_is_dropped(job_queue, settings):
    job_queue.enqueue("")

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == MALFORMED_MESSAGE
    assert len(job_queue) == 0


def test_already_terminal_job_is_not_reprocessed(job_queue, settings, submitted):
    job_id = submitted("once")
    process_next_job(queue=job_queue, settings=settings)
    before = get_job_by_id(job_id)

    job_queue.enqueue(job_id)
    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == ALREADY_TERMINAL
    assert result.status == "completed"
    assert get_job_by_id(job_id) == before
    assert len(job_queue) == 0


def test_processing_job_is_picked_up_again_after_crash(job_queue, settings, submitted):
    job_id = submitted("crashed mid-flight")
    jobs_repo.mark_processing(job_id)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == COMPLETED
    assert get_job_by_id(job_id)["result"] == "CRASHED MID-FLIGHT"


@pytest.mark.error
def test_processing_update_failure_still_acks(job_queue, settings, submitted, monkeypatch):
    job_id = submitted("stuck")

    def failing_mark_processing(job_id: str) -> None:
        raise RuntimeError("update rejected")

    monkeypatch.setattr("app.repositories.jobs_repo.mark_processing", failing_mark_processing)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == UPDATE_FAILED
    assert "update rejected" in result.error
    assert get_job_by_id(job_id)["status"] == "queued"
    assert len(job_queue) == 0


@pytest.mark.error
def test_result_write_failure_still_acks(job_queue, settings, submitted, monkeypatch):
    submitted("no place to put it")

    def failing_mark_completed(job_id: str, result: str, **kwargs) -> None:
        raise RuntimeError("disk full")

    monkeypatch.setattr("app.repositories.jobs_repo.mark_completed", failing_mark_completed)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == UPDATE_FAILED
    assert len(job_queue) == 0


@pytest.mark.error
def test_lookup_fault_propagates_and_leaves_message(job_queue, settings, submitted, monkeypatch):
    submitted("store offline")

    def unreachable(job_id: str):
        raise ConnectionError("store unreachable")

    monkeypatch.setattr("app.repositories.jobs_repo.fetch_job", unreachable)

    with pytest.raises(ConnectionError):
        process_next_job(queue=job_queue, settings=settings)

    assert len(job_queue) == 1


def test_ack_failure_does_not_mask_outcome(job_queue, settings, submitted, monkeypatch):
    from app.jobs.queue import QueueOperationError

    job_id = submitted("ack trouble")

    def failing_ack(message):
        raise QueueOperationError("network blip")

    monkeypatch.setattr(job_queue, "ack", failing_ack)

    result = process_next_job(queue=job_queue, settings=settings)

    assert result.outcome == COMPLETED
    assert get_job_by_id(job_id)["status"] == "completed"


def test_terminal_jobs_never_regress(submitted):
    job_id = submitted("forward only")
    jobs_repo.mark_processing(job_id)
    jobs_repo.mark_completed(job_id, "FORWARD ONLY")

    with pytest.raises(JobTransitionError):
        jobs_repo.mark_processing(job_id)
    with pytest.raises(JobTransitionError):
        jobs_repo.mark_error(job_id, "late failure")

    job = get_job_by_id(job_id)
    assert job["status"] == "completed"
    assert job["error_message"] is None


def test_queued_job_cannot_skip_processing(submitted):
    job_id = submitted("skip ahead")
    with pytest.raises(JobTransitionError):
        jobs_repo.mark_completed(job_id, "SKIP AHEAD")
    assert get_job_by_id(job_id)["status"] == "queued"


def test_worker_loop_stops_after_handled_messages(job_queue, settings, submitted, monkeypatch):
    monkeypatch.setattr("app.jobs.worker.time.sleep", lambda seconds: None)
    first = submitted("one")
    second = submitted("two")

    run_worker_loop(queue=job_queue, settings=settings, stop_after=2)

    assert get_job_by_id(first)["result"] == "ONE"
    assert get_job_by_id(second)["result"] == "TWO"
