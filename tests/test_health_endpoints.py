"""Tests for health, statistics and maintenance endpoints."""

from datetime import timedelta
from unittest.mock import patch

from taskmanager.database.database import DatabaseUnavailable
from taskmanager.database.errors import StoreUnavailable
from taskmanager.database.repository import TaskRepository
from taskmanager.models.timeutil import utc_now


class TestHealthEndpoints:
    """Read-only health reporting."""

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["message"] == "Task Manager API is running"
        assert body["timestamp"].endswith("Z")
        assert body["uptime"] >= 0

    def test_health_detailed(self, test_client):
        response = test_client.get("/health/detailed")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["application"]["name"] == "Task Manager API"
        assert body["application"]["environment"] == "test"
        assert body["application"]["pythonVersion"]
        assert body["database"]["status"] == "healthy"
        assert body["database"]["dialect"] == "sqlite"
        assert body["database"]["connection"]["isConnected"] is True
        assert body["collections"]["tasks"]["healthy"] is True
        assert "platform" in body["system"]

    def test_health_database(self, test_client):
        response = test_client.get("/health/database")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["connected"] is True
        assert body["latencyMs"] >= 0
        assert body["connection"]["status"] == "connected"

    def test_health_database_unhealthy(self, test_client, database):
        with patch.object(database, "ping", side_effect=DatabaseUnavailable("database is down")):
            response = test_client.get("/health/database")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["connected"] is False

    def test_stats(self, test_client):
        test_client.post("/tasks", json={"title": "a", "priority": "high", "completed": True})
        test_client.post("/tasks", json={"title": "b", "priority": "low"})

        body = test_client.get("/health/stats").json()

        assert body["status"] == "OK"
        assert body["database"] == {"status": "healthy", "connected": True}
        assert body["tasks"]["total"] == 2
        assert body["tasks"]["completed"] == 1
        assert body["tasks"]["pending"] == 1
        assert body["tasks"]["completionRate"] == 50
        assert body["tasks"]["recentlyCreated"] == 2
        assert body["priorities"] == {"high": 1, "low": 1}
        assert body["collection"]["count"] == 2

    def test_stats_degraded_when_statistics_fail(self, test_client):
        with patch.object(TaskRepository, "statistics", side_effect=StoreUnavailable()):
            response = test_client.get("/health/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["tasks"] is None
        assert body["error"] == "Database connection error"


class TestMaintenanceEndpoint:
    """POST /health/maintenance/cleanup."""

    def test_cleanup(self, test_client, task_repository):
        old = task_repository.create({"title": "old"})
        task_repository.soft_delete(old.id, now=utc_now() - timedelta(days=45))

        response = test_client.post("/health/maintenance/cleanup", json={"olderThan": 30})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Cleanup completed successfully"
        assert body["deletedCount"] == 1
        assert body["cutoffDate"].endswith("Z")

    def test_cleanup_without_body_uses_default(self, test_client):
        response = test_client.post("/health/maintenance/cleanup")
        assert response.status_code == 200
        assert response.json()["deletedCount"] == 0

    def test_cleanup_forbidden_in_production(self, production_client):
        response = production_client.post("/health/maintenance/cleanup", json={"olderThan": 30})
        assert response.status_code == 403
