from fastapi.testclient import TestClient

from app.core.config import settings
from app.main import create_app


def test_health_ok():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"


def test_health_live():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health/live")
    assert r.status_code == 200
    assert r.json().get("status") == "live"


def test_health_ready(client):
    r = client.get("/health/ready")
    assert r.status_code == 200
    assert r.json().get("status") == "ready"


def test_cron_sweep_requires_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)
    assert client.post("/health/cron/attempt-sweep").status_code == 404

    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    r = client.post("/health/cron/attempt-sweep", headers={"X-Cron-Secret": "wrong"})
    assert r.status_code == 403


def test_cron_sweep_enqueues_once_per_interval(client, monkeypatch, enqueued):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    headers = {"X-Cron-Secret": "s3cret"}

    first = client.post("/health/cron/attempt-sweep", headers=headers).json()
    second = client.post("/health/cron/attempt-sweep", headers=headers).json()

    assert first["enqueued"] is True
    assert second == {"ok": True, "enqueued": False, "reason": "locked"}
    assert [(q, name) for q, name, _ in enqueued] == [(settings.rq_queue_default, "attempt_sweep_job")]
