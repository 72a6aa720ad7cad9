"""Tests for best-effort CRM event delivery."""

import json

import httpx
import pytest
import respx

from enforcement.services import crm_tracker
from enforcement.services.crm_tracker import CRMTracker
from enforcement.tests.fakes import RecordingDispatcher

WEBHOOK_URL = "https://crm.test/hooks/enforcement"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    async def instant(_seconds):
        return None

    monkeypatch.setattr(crm_tracker.asyncio, "sleep", instant)


class TestCRMTracker:
    """Tests for event envelopes, retries and dispatch."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_event_envelope(self):
        route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(204))

        delivered = await CRMTracker(WEBHOOK_URL).send_event(
            CRMTracker.EVENT_BATCH_SUBMITTED, {"batch_id": "b1", "items": 3}
        )

        assert delivered is True
        request = route.calls.last.request
        assert request.headers["X-Event-Type"] == "dmca.batch_submitted"
        body = json.loads(request.content)
        assert body["event_type"] == "dmca.batch_submitted"
        assert body["data"] == {"batch_id": "b1", "items": 3}
        assert set(body) == {"event_id", "event_type", "timestamp", "data"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_then_succeeds(self):
        route = respx.post(WEBHOOK_URL).mock(side_effect=[httpx.Response(502), httpx.Response(200)])
        assert await CRMTracker(WEBHOOK_URL, max_retries=2).send_event("dmca.notice_generated", {}) is True
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_gives_up(self):
        route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(500))
        assert await CRMTracker(WEBHOOK_URL, max_retries=1).send_event("dmca.notice_generated", {}) is False
        assert route.call_count == 2

    def test_track_dispatches_in_background(self):
        dispatcher = RecordingDispatcher()
        CRMTracker(WEBHOOK_URL).track(dispatcher, CRMTracker.EVENT_NOTICE_GENERATED, {"id": "i1"})
        assert dispatcher.side_effects == ["crm:dmca.notice_generated"]

    def test_disabled_without_url(self):
        dispatcher = RecordingDispatcher()
        tracker = CRMTracker("")
        tracker.track(dispatcher, CRMTracker.EVENT_NOTICE_GENERATED, {})
        assert tracker.enabled is False
        assert dispatcher.side_effects == []
