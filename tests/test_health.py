"""
Health endpoint tests
Liveness, readiness and detailed component status of the API
"""

import asyncio
import datetime
import shutil

import pytest
from sqlalchemy.exc import OperationalError

from scorm_backend.db.config import get_session
from scorm_backend.main import app


class BrokenSession:
    """Session stand-in whose database is unreachable"""

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is gone"))


async def broken_session():
    yield BrokenSession()


class TestHealthEndpoints:
    """Test health check endpoints"""

    @pytest.mark.asyncio
    async def test_health_check_success(self, client):
        """Basic health check returns success"""
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "uptime" in data

    @pytest.mark.asyncio
    async def test_health_check_response_format(self, client):
        """Health check response format compliance"""
        data = (await client.get("/api/v1/health")).json()

        assert isinstance(data["status"], str)
        assert isinstance(data["uptime"], (int, float))
        try:
            datetime.datetime.fromisoformat(data["timestamp"].replace('Z', '+00:00'))
        except ValueError:
            pytest.fail("Timestamp is not in valid ISO format")

    @pytest.mark.asyncio
    async def test_health_check_detailed_components(self, client, blob_store):
        """Detailed health check reports database and storage"""
        response = await client.get("/api/v1/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"] == {"reachable": True}
        assert data["components"]["storage"]["root"] == str(blob_store.root)
        assert data["components"]["storage"]["writable"] is True

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_readiness_without_database(self, client):
        app.dependency_overrides[get_session] = broken_session

        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert "database unavailable" in response.json()["error"]

        detailed = (await client.get("/api/v1/health/detailed")).json()
        assert detailed["status"] == "degraded"
        assert detailed["components"]["database"]["reachable"] is False

    @pytest.mark.asyncio
    async def test_readiness_without_storage(self, client, blob_store):
        shutil.rmtree(blob_store.root)

        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert "storage" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        data = (await client.get("/api/v1/health/live")).json()
        assert data["status"] == "alive"
        assert isinstance(data["pid"], int)

    @pytest.mark.asyncio
    async def test_health_check_concurrent_requests(self, client):
        """Health check handles concurrent requests"""
        responses = await asyncio.gather(
            *(client.get("/api/v1/health") for _ in range(10))
        )
        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_health_check_cors_headers(self, client):
        """Health check includes CORS headers for the frontend origin"""
        response = await client.get(
            "/api/v1/health", headers={"Origin": "http://localhost:3000"}
        )
        assert "access-control-allow-origin" in response.headers

    @pytest.mark.asyncio
    async def test_root_endpoint(self, client):
        data = (await client.get("/")).json()
        assert data["status"] == "running"
        assert data["health"] == "/api/v1/health"
