"""Test health check endpoint."""

from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data
    # Services are not started under the test client
    assert data["config_ready"] is False


@pytest.mark.asyncio
async def test_health_reports_config_ready(client: AsyncClient):
    store = MagicMock()
    store.is_ready.return_value = True
    with patch("strmsync.api.routes.health.get_config_store", return_value=store):
        resp = await client.get("/api/health")
    assert resp.json()["config_ready"] is True
