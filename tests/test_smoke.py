"""Smoke tests for routing, CORS and error bodies."""
import pytest

ORIGIN = "https://frontend.example.com"


@pytest.mark.smoke
def test_health_endpoint_returns_ok(client):
    """Verify the health endpoint returns 200 with expected JSON."""
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload == {"status": "ok", "service": "textjobs"}


@pytest.mark.smoke
@pytest.mark.parametrize(
    "path",
    ["/api/jobs/submit", "/api/hooks/job-status", "/api/jobs/8f14e45f-ea3e-4c4b-9a57-2b5d0c8c2a11"],
)
def test_preflight_returns_permissive_cors_headers(client, path):
    response = client.open(
        path,
        method="OPTIONS",
        headers={
            "Origin": ORIGIN,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type, X-Webhook-Signature",
        },
    )
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert "POST" in response.headers["Access-Control-Allow-Methods"]
    allowed = response.headers["Access-Control-Allow-Headers"]
    assert "Content-Type" in allowed
    assert "X-Webhook-Signature" in allowed


@pytest.mark.smoke
def test_regular_responses_carry_cors_headers(client):
    response = client.get("/health", headers={"Origin": ORIGIN})
    assert response.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert response.headers["Access-Control-Allow-Credentials"] == "true"


@pytest.mark.smoke
def test_wrong_method_returns_json_405(client):
    response = client.delete("/api/hooks/job-status")
    assert response.status_code == 405
    assert response.get_json() == {"error": "Method not allowed"}


@pytest.mark.smoke
def test_unknown_route_returns_json_404(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Not found"}
