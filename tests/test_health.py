"""
Tests for health check endpoints
"""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from chatty.errors import BackendError


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Test basic health endpoint returns healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_health_store_endpoint(client: AsyncClient):
    response = await client.get("/health/store")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "store": "connected"}


@pytest.mark.asyncio
async def test_health_store_reports_backend_errors(client: AsyncClient, store, monkeypatch):
    monkeypatch.setattr(store, "ping", AsyncMock(side_effect=BackendError("offline")))

    response = await client.get("/health/store")

    assert response.json() == {"status": "unhealthy", "store": "backend_unavailable"}


@pytest.mark.asyncio
async def test_health_ready_endpoint_structure(client: AsyncClient):
    response = await client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"] == {"store": "healthy"}
    assert "connections" in data
    assert "counters" in data
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_ready_returns_503_when_store_is_down(client: AsyncClient, store, monkeypatch):
    monkeypatch.setattr(store, "ping", AsyncMock(side_effect=BackendError("offline")))

    response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_security_headers_present(client: AsyncClient):
    response = await client.get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
