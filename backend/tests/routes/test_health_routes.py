def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_metrics_exposes_booking_counters(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "coachdesk_http_request_duration_seconds_count" in response.text
