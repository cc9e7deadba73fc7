"""
Tests for request metrics labelling and the /metrics scrape.
"""
from fastapi.testclient import TestClient
from sqlalchemy import insert

from cellarsync.core.database import get_db_session, webhook_events
from cellarsync.core.metrics import http_requests_total, normalize_path, route_family
from cellarsync.main import app

client = TestClient(app)


def _record_event(event_id, processed, error=None):
    with get_db_session() as session:
        session.execute(insert(webhook_events).values(
            stripe_event_id=event_id,
            type="customer.subscription.updated",
            signature_valid=True,
            processed=processed,
            processing_error=error,
            payload_hash="0" * 64,
        ))


def test_route_family_groups_paths():
    assert route_family("/api/debug/sync-check") == "admin"
    assert route_family("/api/business/napa-cellars/metrics") == "admin"
    assert route_family("/api/stripe/webhook") == "webhook"
    assert route_family("/readyz") == "health"
    assert route_family("/api/health/db") == "health"
    assert route_family("/metrics") == "metrics"
    assert route_family("/docs") == "other"


def test_normalize_path_collapses_business_refs_and_ids():
    assert normalize_path("/api/business/napa-cellars/metrics") == "/api/business/:id/metrics"
    assert normalize_path("/api/debug/sub_1AbC") == "/api/debug/:id"
    assert normalize_path("/api/debug/sync-check") == "/api/debug/sync-check"


def test_admin_requests_are_labelled_admin(admin_headers):
    client.get("/api/business/napa-cellars/metrics", headers=admin_headers)

    assert http_requests_total.value({
        "family": "admin",
        "method": "GET",
        "path": "/api/business/:id/metrics",
        "status": "404",
    }) == 1


def test_webhook_requests_are_labelled_webhook():
    client.post("/api/stripe/webhook", content=b"{}")

    assert http_requests_total.value({
        "family": "webhook",
        "method": "POST",
        "path": "/api/stripe/webhook",
        "status": "503",
    }) == 1


def test_scrape_reports_webhook_backlog():
    _record_event("evt_done", processed=True)
    _record_event("evt_pending", processed=False)
    _record_event("evt_failed_1", processed=False, error="Plan plan_x not found")
    _record_event("evt_failed_2", processed=False, error="db blip")

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "# TYPE webhook_events_backlog gauge" in resp.text
    assert 'webhook_events_backlog{state="pending"} 1.0' in resp.text
    assert 'webhook_events_backlog{state="failed"} 2.0' in resp.text


def test_scrape_with_empty_backlog_reports_zero():
    resp = client.get("/metrics")

    assert 'webhook_events_backlog{state="pending"} 0.0' in resp.text
    assert 'webhook_events_backlog{state="failed"} 0.0' in resp.text
