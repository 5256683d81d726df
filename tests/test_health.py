"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status and version
  - database ping failure reports 'degraded' instead of erroring
  - no authentication required
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_ok(api_client):
    client, _, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_degraded_when_database_fails(api_client, monkeypatch):
    client, _, store = api_client

    def broken_ping():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "ping", broken_ping)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"


def test_health_no_auth_required(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.get("/health", headers={})
    assert resp.status_code == 200
