from __future__ import annotations

from fastapi.testclient import TestClient

from app.monitoring.registry import MetricsRegistry

from support import SESSION_ID, TEACHER, token_for


def test_health_reports_active_rooms(client: TestClient, tutoring_session) -> None:
    assert client.get("/health").json()["activeRooms"] == 0

    with client.websocket_connect(f"/ws/sessions?token={token_for(TEACHER)}") as teacher:
        teacher.send_json({"type": "join", "sessionId": SESSION_ID})
        assert teacher.receive_json()["type"] == "joined"

        payload = client.get("/health").json()

    assert payload["status"] == "ok"
    assert payload["activeRooms"] == 1


def test_metrics_endpoint_renders_signaling_series(client: TestClient) -> None:
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "# TYPE signaling_active_connections gauge" in body
    assert "# TYPE signaling_messages_total counter" in body


def test_registry_renders_labelled_samples() -> None:
    registry = MetricsRegistry()
    counter = registry.counter("demo_total", "Demo counter.", label_names=("kind",))
    gauge = registry.gauge("demo_open", "Demo gauge.")

    counter.labels("offer").inc()
    counter.labels("offer").inc(2)
    counter.labels('we"ird').inc()
    gauge.labels().inc()
    gauge.labels().dec()

    lines = registry.render().splitlines()

    assert 'demo_total{kind="offer"} 3' in lines
    assert 'demo_total{kind="we\\"ird"} 1' in lines
    assert "demo_open 0" in lines
    assert counter.value("offer") == 3
