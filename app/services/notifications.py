"""Receiver-side handling of job change notifications (database webhooks)."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from config.settings import Settings
from app.repositories import webhook_events_repo

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"


def is_authorized(provided: Optional[str], *, settings: Settings) -> bool:
    """Compare the shared secret; with no secret configured every caller is accepted."""
    expected = settings.WEBHOOK_SECRET
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _record_id(payload: dict[str, object]) -> Optional[str]:
    record = payload.get("record")
    if not isinstance(record, dict):
        return None
    value = record.get("id")
    return str(value) if value else None


def record_notification(payload: dict[str, object], *, settings: Settings) -> bool:
    """Optionally store the notification for audit.

    Returns True when an event row was written. Storage failures are logged
    and reported as False; they never reach the caller, since the sender only
    needs to know the notification arrived.
    """
    record = payload.get("record") if isinstance(payload.get("record"), dict) else {}
    job_id = _record_id(payload)
    logger.info(
        "Webhook received for job update: type=%s table=%s job=%s status=%s",
        payload.get("type"),
        payload.get("table"),
        job_id,
        record.get("status"),
    )

    if not settings.SAVE_WEBHOOK_EVENTS or not job_id:
        return False

    event_type = str(payload.get("type") or "UPDATE")
    try:
        webhook_events_repo.save_event(job_id, event_type, payload)
    except Exception:
        logger.exception("Failed to save webhook event for job %s", job_id)
        return False
    logger.info("Webhook event saved for job %s", job_id)
    return True
