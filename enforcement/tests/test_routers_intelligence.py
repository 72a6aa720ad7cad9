"""
Tests for the intelligence router.
"""

from uuid import uuid4

from fastapi.testclient import TestClient

from enforcement.main import app
from enforcement.routers.intelligence import get_ai_filter
from enforcement.services.ai_filter import AIFilter
from enforcement.services.llm_client import LLMClient
from enforcement.tests.fakes import FakeLLM


class TestIntelligenceRouter:
    """Tests for intelligence, query optimization and filtering endpoints."""

    def test_get_intelligence(self, client: TestClient, auth_headers, product, infringement):
        """Test learned data, metrics and suggestions are returned."""
        response = client.get(f"/api/intelligence/{product.id}", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["intelligence"]["has_learning_data"] is False
        assert data["metrics"]["total_detections"] == 1
        assert isinstance(data["suggestions"], list)

    def test_ownership(self, client: TestClient, auth_headers, product):
        """Test unknown and foreign products."""
        assert client.get(f"/api/intelligence/{uuid4()}", headers=auth_headers).status_code == 404
        response = client.get(f"/api/intelligence/{product.id}", headers={"X-User-Id": str(uuid4())})
        assert response.status_code == 403

    def test_optimize_query_without_patterns(self, client: TestClient, auth_headers, product):
        """Test the base query is returned unchanged without learned patterns."""
        response = client.post(
            f"/api/intelligence/{product.id}/optimize-query",
            json={"platform": "google", "base_query": "Alpha Trend Indicator"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["optimized_query"] == "Alpha Trend Indicator"

    def test_filter_unconfigured(self, client: TestClient, auth_headers, product):
        """Test filtering is unavailable without an API key."""
        app.dependency_overrides[get_ai_filter] = lambda: AIFilter(llm=LLMClient(api_key=""))
        response = client.post(
            f"/api/intelligence/{product.id}/filter",
            json={"results": [{"source_url": "https://a.test", "platform": "google"}]},
            headers=auth_headers,
        )
        assert response.status_code == 503

    def test_filter(self, client: TestClient, auth_headers, product):
        """Test results are classified into bands."""
        llm = FakeLLM([{"is_infringement": True, "confidence": 0.9, "reasoning": "cracked download"}])
        app.dependency_overrides[get_ai_filter] = lambda: AIFilter(llm=llm, batch_delay_ms=0)
        response = client.post(
            f"/api/intelligence/{product.id}/filter",
            json={"results": [
                {"source_url": "https://a.test", "platform": "google", "title": "Alpha Trend free"},
                {"source_url": "https://b.test", "platform": "telegram"},
            ]},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["passed"] == 2
        assert data["estimated_cost"] > 0
