def test_health_endpoints(client):
    live = client.get("/api/health/live")
    assert live.status_code == 200
    assert live.json()["status"] == "ok"

    ready = client.get("/api/health/ready")
    assert ready.status_code in {200, 503}
    payload = ready.json()
    assert "database" in payload
    assert set(payload["database"]) >= {"ok", "schema_ok", "missing_tables", "missing_columns"}


def test_responses_carry_request_id(client):
    response = client.get("/api/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"


def test_oversized_request_is_rejected(client, admin_headers):
    response = client.put(
        "/api/timetable-structure",
        content=b"x" * 1_000_001,
        headers={**admin_headers, "Content-Type": "application/json", "Content-Length": "1000001"},
    )

    assert response.status_code == 413
