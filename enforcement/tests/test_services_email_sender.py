"""Tests for notice delivery through the email API."""

import json

import httpx
import pytest
import respx

from enforcement.services.email_sender import EmailSender

API_URL = "https://mail.test/emails"


@pytest.fixture
def sender():
    return EmailSender(api_key="re_test", api_url=API_URL, from_email="dmca@enforcement.test")


async def send(sender, **overrides):
    kwargs = dict(
        to_email="dmca@telegram.org",
        subject="DMCA Takedown Notice",
        body="Notice body",
        reply_to="legal@example.com",
        sender_name="Jane Creator",
    )
    kwargs.update(overrides)
    return await sender.send_notice(**kwargs)


class TestEmailSender:
    """Tests for payload construction and failure reporting."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_successful_send(self, sender):
        route = respx.post(API_URL).mock(return_value=httpx.Response(200, json={"id": "em_123"}))

        result = await send(sender, cc_emails=["copy@example.com"])

        assert result.success is True
        assert result.message_id == "em_123"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer re_test"
        payload = json.loads(request.content)
        assert payload["from"] == "Jane Creator via Enforcement <dmca@enforcement.test>"
        assert payload["to"] == ["dmca@telegram.org"]
        assert payload["reply_to"] == "legal@example.com"
        assert payload["cc"] == ["copy@example.com"]
        assert payload["headers"] == {"X-DMCA-Notice": "true"}
        assert payload["text"] == "Notice body"

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_reply_to_or_cc(self, sender):
        route = respx.post(API_URL).mock(return_value=httpx.Response(200, json={"id": "em_1"}))
        await send(sender, reply_to="")
        payload = json.loads(route.calls.last.request.content)
        assert "reply_to" not in payload
        assert "cc" not in payload

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_send(self, sender):
        respx.post(API_URL).mock(return_value=httpx.Response(422, text="invalid recipient"))
        result = await send(sender)
        assert result.success is False
        assert result.error == "Email delivery failed: invalid recipient"

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error(self, sender):
        respx.post(API_URL).mock(side_effect=httpx.ConnectError("refused"))
        result = await send(sender)
        assert result.success is False
        assert result.error.startswith("Email delivery failed:")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        result = await send(EmailSender(api_key=""))
        assert result.success is False
        assert result.error == "RESEND_API_KEY not configured"
