from __future__ import annotations

from models import create_webhook_event, list_webhook_events_for_job


def save_event(job_id: str, event_type: str, payload: dict[str, object]) -> dict[str, object]:
    """Persist a received notification keyed by job id."""
    return create_webhook_event(job_id=job_id, event_type=event_type, payload=payload)


def list_events(job_id: str) -> list[dict[str, object]]:
    """Return stored notifications for a job; only tests read the audit trail today."""
    return list_webhook_events_for_job(job_id)
