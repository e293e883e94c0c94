"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status and version fields
  - No authentication or CSRF token required
"""

from __future__ import annotations


def test_health_returns_200_with_version(auth_client):
    """Health endpoint returns 200 with status and version."""
    client, _ = auth_client
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"]


def test_health_no_auth_required(auth_client):
    """Health endpoint is accessible without any auth or CSRF headers."""
    client, _ = auth_client
    resp = client.get("/health", headers={"Authorization": "", "X-CSRF-Token": ""})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
