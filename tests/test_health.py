"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status and version fields
  - No authentication required
  - Unknown routes still answer in JSON
"""

from __future__ import annotations

from api.main import __version__


def test_health_returns_200_with_version(api_client):
    """Health endpoint returns 200 with status and version."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": __version__}


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers or cookies."""
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_route_is_404(api_client):
    client, _, _ = api_client
    assert client.get("/api/v1/nope").status_code == 404


def test_unknown_route_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/nope")
    assert resp.json()["error"]["code"] == "http_404"


def test_wrong_method_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.delete("/api/v1/health")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "http_405"
    assert "GET" in resp.headers["allow"]
