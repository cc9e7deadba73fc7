from fastapi.testclient import TestClient

import cellarsync.api.health as health_api
from cellarsync.main import app

client = TestClient(app)


def test_healthz_always_ok():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_schema_present():
    """conftest creates every table on the in-memory database."""
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_reports_missing_tables(monkeypatch):
    class FakeInspector:
        def has_table(self, name):
            return name != "webhook_events"

    monkeypatch.setattr(health_api, "inspect", lambda engine: FakeInspector())

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "webhook_events" in resp.json().get("detail", "")


def test_readyz_handles_db_down(monkeypatch):
    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(health_api, "get_engine", boom)

    resp = client.get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "database" in body.get("detail", "")


def test_health_db_is_deterministic_with_fixed_clock():
    resp = client.get("/api/health/db", params={"now": "2026-10-19T00:00:00+00:00"})
    body = resp.json()
    assert body["ok"] is True
    assert body["computed_at"] == "2026-10-19T00:00:00+00:00"
    assert body["db"]["latency_ms"] is None
    assert "plan_subscriptions" in body["db"]["tables_present"]


def test_metrics_endpoint_exports_prometheus_text():
    client.get("/healthz")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert 'http_requests_total{family="health",method="GET",path="/healthz",status="200"}' in resp.text


def test_readyz_requires_memberships_table(monkeypatch):
    class FakeInspector:
        def has_table(self, name):
            return name != "memberships"

    monkeypatch.setattr(health_api, "inspect", lambda engine: FakeInspector())

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "memberships" in resp.json().get("detail", "")
