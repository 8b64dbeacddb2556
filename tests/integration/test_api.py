"""Integration tests for application-level endpoints and error rendering."""

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Test health check endpoints."""

    def test_health_check(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "version" in data

    def test_api_health(self, client: TestClient):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestErrorRendering:
    def test_malformed_json_body(self, client: TestClient):
        response = client.post(
            "/api/generate-api-key",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid request body"}

    def test_gateway_error_shape(self, client: TestClient):
        response = client.post("/api/delete-api-key", json={"name": "nobody"})

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "No API key record found for this user",
        }

    def test_unknown_route(self, client: TestClient):
        assert client.get("/api/does-not-exist").status_code == 404
