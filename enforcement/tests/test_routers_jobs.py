"""
Tests for the cron job router.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from enforcement.config import get_settings
from enforcement.main import app
from enforcement.routers.jobs import get_llm_client, get_timestamp_service
from enforcement.services.timestamp_service import TimestampService
from enforcement.tests.fakes import FakeLLM


class TestJobsRouter:
    """Tests for timestamp upgrades and keyword refresh triggers."""

    def test_requires_secret(self, client: TestClient, product):
        """Test every job endpoint requires the cron secret."""
        assert client.post("/api/jobs/upgrade-timestamps").status_code == 401
        assert client.post(f"/api/jobs/refresh-keywords/{product.id}").status_code == 401

    @pytest.mark.parametrize("configured", ["", "changeme_generate_random_secret"])
    def test_refused_without_configured_secret(self, client: TestClient, monkeypatch, configured):
        """Test triggers are refused while the secret is unset or a placeholder."""
        monkeypatch.setattr(get_settings(), "cron_secret", configured)
        headers = {"X-Cron-Secret": configured}
        assert client.post("/api/jobs/upgrade-timestamps", headers=headers).status_code == 503
        assert client.post("/api/dmca/process-queue", headers=headers).status_code == 503

    def test_upgrade_without_notary(self, client: TestClient, cron_headers):
        """Test upgrades are skipped when OpenTimestamps is unavailable."""
        app.dependency_overrides[get_timestamp_service] = lambda: TimestampService(notary_module="missing_notary")
        response = client.post("/api/jobs/upgrade-timestamps", headers=cron_headers)
        assert response.status_code == 200
        assert response.json() == {
            "available": False, "checked": 0, "confirmed": 0, "still_pending": 0, "failed": 0,
        }

    def test_refresh_unknown_product(self, client: TestClient, cron_headers):
        """Test an unknown product returns 404."""
        app.dependency_overrides[get_llm_client] = lambda: FakeLLM()
        response = client.post(f"/api/jobs/refresh-keywords/{uuid4()}", headers=cron_headers)
        assert response.status_code == 404

    def test_refresh_needs_feedback(self, client: TestClient, cron_headers, product):
        """Test a product without feedback is not refreshed."""
        app.dependency_overrides[get_llm_client] = lambda: FakeLLM()
        response = client.post(f"/api/jobs/refresh-keywords/{product.id}", headers=cron_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["refreshed"] is False
        assert data["reason"] == "Only 0 feedback items (need 5)"
