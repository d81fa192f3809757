from __future__ import annotations

import datetime
import logging
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from config.settings import Settings
from app.jobs.queue import JobQueue
from app.jobs.worker import IDLE, JOB_NOT_FOUND, UPDATE_FAILED, process_next_job
from app.services import notifications, status
from app.services.submission import JobSubmissionError, JobValidationError, submit_job

logger = logging.getLogger(__name__)

bp = Blueprint("core", __name__)


def _settings() -> Settings:
    return current_app.extensions["textjobs"]["settings"]


def _job_queue() -> JobQueue:
    return current_app.extensions["textjobs"]["queue"]


def _isoformat_or_none(value: object) -> Optional[str]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.datetime.fromisoformat(value).isoformat()
        except ValueError:
            return value
    return str(value)


def _serialize_job(job: dict[str, object]) -> dict[str, object]:
    return {
        "id": job["id"],
        "text_input": job["text_input"],
        "status": job["status"],
        "result": job.get("result"),
        "error_message": job.get("error_message"),
        "created_at": _isoformat_or_none(job.get("created_at")),
        "updated_at": _isoformat_or_none(job.get("updated_at")),
        "processed_at": _isoformat_or_none(job.get("processed_at")),
    }


@bp.get("/health")
def health():
    return jsonify({"status": "ok", "service": "textjobs"}), 200


@bp.post("/api/jobs/submit")
def api_submit_job():
    body = request.get_json(silent=True)
    text = body.get("text") if isinstance(body, dict) else None

    try:
        submitted = submit_job(text, queue=_job_queue(), settings=_settings())
    except JobValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except JobSubmissionError:
        return jsonify({"error": "Failed to submit job"}), 500
    except Exception:
        logger.exception("Error submitting job")
        return jsonify({"error": "Failed to submit job"}), 500

    return jsonify(submitted), 201


@bp.get("/api/jobs/<job_id>")
def api_get_job(job_id: str):
    if not status.is_valid_job_id(job_id):
        return jsonify({"error": "Job ID must be a valid UUID"}), 400

    try:
        job = status.get_job(job_id)
    except Exception:
        logger.exception("Error fetching job %s", job_id)
        return jsonify({"error": "Failed to fetch job"}), 500

    if job is None:
        return jsonify({"error": "Job not found"}), 404
    return jsonify(_serialize_job(job)), 200


@bp.post("/api/hooks/job-status")
def api_job_status_hook():
    settings = _settings()
    try:
        if not notifications.is_authorized(
            request.headers.get(notifications.SIGNATURE_HEADER), settings=settings
        ):
            logger.warning("Invalid webhook signature received")
            return jsonify({"error": "Unauthorized"}), 401

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Missing webhook payload"}), 400

        notifications.record_notification(payload, settings=settings)
    except Exception:
        logger.exception("Error processing webhook")
        return jsonify({"error": "Failed to process webhook"}), 500

    return jsonify({"success": True}), 200


@bp.post("/api/worker/run")
def api_run_worker():
    """Run one worker invocation; meant to be hit by a scheduler or trigger."""
    try:
        result = process_next_job(queue=_job_queue(), settings=_settings())
    except Exception as exc:
        logger.exception("Unexpected worker error")
        return jsonify({"error": "Internal server error", "details": str(exc)}), 500

    if result.outcome == IDLE:
        return jsonify({"message": "No messages in queue"}), 200
    if result.outcome == JOB_NOT_FOUND:
        return jsonify({"error": "Job not found", "jobId": result.job_id}), 404
    if result.outcome == UPDATE_FAILED:
        return jsonify({"error": result.error, "jobId": result.job_id}), 500
    if not result.success:
        return (
            jsonify({"error": result.error, "jobId": result.job_id, "msgId": result.message_id}),
            409,
        )
    return (
        jsonify(
            {
                "message": "Job processed successfully",
                "jobId": result.job_id,
                "msgId": result.message_id,
                "status": result.status,
            }
        ),
        200,
    )
