"""
Test admin authentication with X-Admin-Key.

- Correct key -> route runs, actor id is a key hash
- Wrong or missing key -> 401
- No key configured -> 503
"""
from fastapi.testclient import TestClient

from cellarsync.core.config import settings
from cellarsync.core.metrics import admin_auth_failures_total
from cellarsync.main import app

client = TestClient(app)

URL = "/api/debug/webhook-test"


def test_correct_key_is_accepted(admin_headers):
    response = client.get(URL, headers=admin_headers)
    assert response.status_code == 200


def test_wrong_key_is_rejected():
    response = client.get(URL, headers={"X-Admin-Key": "nope"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "admin_unauthorized"
    assert admin_auth_failures_total.value({"reason": "invalid_key"}) == 1


def test_missing_key_is_rejected():
    response = client.get(URL)
    assert response.status_code == 401


def test_unconfigured_key_returns_503(monkeypatch, admin_headers):
    """Admin routes never run open when ADMIN_KEY is unset."""
    monkeypatch.setattr(settings, "ADMIN_KEY", None)

    response = client.get(URL, headers=admin_headers)
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "admin_auth_unconfigured"
    assert admin_auth_failures_total.value({"reason": "unconfigured"}) == 1
