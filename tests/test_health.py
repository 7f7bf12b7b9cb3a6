"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, service and version fields
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200(api_client):
    client, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "airlock", "version": "0.1.0"}


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"

