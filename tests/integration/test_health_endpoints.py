"""
Health endpoint checks.
"""


def test_health_reports_database_and_scheduler(client, api):
    """Without a started engine the service is degraded but reachable."""
    response = client.get(api("/health"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["database"] == "connected"
    assert payload["scheduler"] == {"status": "stopped"}
    assert "version" in payload


def test_health_timestamp_format(client, api):
    """Timestamp should be ISO 8601 formatted."""
    timestamp = client.get(api("/health")).json()["timestamp"]

    assert "T" in timestamp
    assert timestamp.endswith("Z") or "+" in timestamp


def test_request_id_echoed(client, api):
    response = client.get(api("/health"), headers={"X-Request-ID": "delivery-12345678"})

    assert response.headers["x-request-id"] == "delivery-12345678"


def test_unusable_request_id_replaced(client, api):
    response = client.get(api("/health"), headers={"X-Request-ID": "bad id"})

    assert response.headers["x-request-id"] != "bad id"
    assert len(response.headers["x-request-id"]) == 36
