from __future__ import annotations

import pytest

from app.repositories import webhook_events_repo


def _payload(job_id: str = "0b7c1c1e-2f0a-4c3e-8f55-3b1f3e6f9a10", status: str = "completed") -> dict:
    return {
        "type": "UPDATE",
        "table": "jobs",
        "schema": "public",
        "record": {"id": job_id, "status": status, "result": "HELLO"},
        "old_record": {"id": job_id, "status": "processing", "result": None},
    }


def test_webhook_open_when_no_secret_configured(client):
    response = client.post("/api/hooks/job-status", json=_payload())
    assert response.status_code == 200
    assert response.get_json() == {"success": True}


def test_webhook_requires_matching_secret(make_app):
    client = make_app(WEBHOOK_SECRET="s3cret").test_client()

    missing = client.post("/api/hooks/job-status", json=_payload())
    wrong = client.post(
        "/api/hooks/job-status", json=_payload(), headers={"x-webhook-signature": "nope"}
    )
    right = client.post(
        "/api/hooks/job-status", json=_payload(), headers={"x-webhook-signature": "s3cret"}
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.get_json() == {"error": "Unauthorized"}
    assert right.status_code == 200


def test_webhook_rejects_missing_payload(client):
    response = client.post("/api/hooks/job-status", data="", content_type="application/json")
    assert response.status_code == 400
    assert response.get_json() == {"error": "Missing webhook payload"}


def test_webhook_accepts_empty_object_payload(client):
    response = client.post("/api/hooks/job-status", json={})
    assert response.status_code == 200
    assert response.get_json() == {"success": True}


def test_webhook_does_not_store_events_by_default(client):
    payload = _payload()
    client.post("/api/hooks/job-status", json=payload)
    assert webhook_events_repo.list_events(payload["record"]["id"]) == []


def test_webhook_stores_audit_event_when_enabled(make_app):
    client = make_app(SAVE_WEBHOOK_EVENTS=True).test_client()
    payload = _payload()

    response = client.post("/api/hooks/job-status", json=payload)

    assert response.status_code == 200
    events = webhook_events_repo.list_events(payload["record"]["id"])
    assert len(events) == 1
    assert events[0]["event_type"] == "UPDATE"
    assert events[0]["payload"]["record"]["status"] == "completed"
    assert events[0]["received_at"] is not None


def test_webhook_without_record_id_is_acknowledged_but_not_stored(make_app):
    client = make_app(SAVE_WEBHOOK_EVENTS=True).test_client()

    response = client.post("/api/hooks/job-status", json={"type": "DELETE", "table": "jobs"})

    assert response.status_code == 200
    assert response.get_json() == {"success": True}


@pytest.mark.error
def test_webhook_storage_failure_still_acknowledged(make_app, monkeypatch):
    client = make_app(SAVE_WEBHOOK_EVENTS=True).test_client()

    def failing_save(job_id, event_type, payload):
        raise RuntimeError("audit table missing")

    monkeypatch.setattr("app.repositories.webhook_events_repo.save_event", failing_save)

    response = client.post("/api/hooks/job-status", json=_payload())

    assert response.status_code == 200
    assert response.get_json() == {"success": True}
