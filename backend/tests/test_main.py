"""
Tests for application-level endpoints and middleware.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient


class TestHealthEndpoints:
    def test_health(self, test_client: TestClient):
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    def test_live(self, test_client: TestClient):
        response = test_client.get("/live")

        assert response.json()["status"] == "alive"

    def test_ready(self, test_client: TestClient, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("src.main.check_database_health", AsyncMock(return_value=True))

        response = test_client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["database"] == "healthy"

    def test_not_ready_without_database(
        self, test_client: TestClient, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr("src.main.check_database_health", AsyncMock(return_value=False))

        response = test_client.get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["dependencies_ready"] is False


class TestMiddleware:
    def test_request_id_is_echoed(self, test_client: TestClient):
        response = test_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, test_client: TestClient):
        response = test_client.get("/health")

        assert response.headers["X-Request-ID"]

    def test_security_headers(self, test_client: TestClient):
        response = test_client.get("/live")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_unknown_route_uses_error_envelope(self, test_client: TestClient):
        response = test_client.get("/api/v1/unknown")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "HTTP_404"
