"""Outbound DMCA notice delivery through the Resend email API."""

import logging
from dataclasses import dataclass

import httpx

from enforcement.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    method: str  # email | web_form | manual
    message_id: str | None = None
    form_url: str | None = None
    error: str | None = None


class EmailSender:
    """Sends plain-text notices via Resend."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        from_email: str | None = None,
        timeout: float = 30.0,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.api_url = api_url or settings.resend_api_url
        self.from_email = from_email or settings.dmca_from_email
        self.timeout = timeout

    async def send_notice(
        self,
        to_email: str,
        subject: str,
        body: str,
        reply_to: str,
        sender_name: str,
        cc_emails: list[str] | None = None,
    ) -> SendResult:
        """Send one notice. Never raises; failures are returned in the result."""
        if not self.api_key:
            return SendResult(success=False, method="email", error="RESEND_API_KEY not configured")

        payload = {
            "from": f"{sender_name} via Enforcement <{self.from_email}>",
            "to": [to_email],
            "subject": subject,
            "text": body,
            "headers": {"X-DMCA-Notice": "true"},
        }
        if reply_to:
            payload["reply_to"] = reply_to
        if cc_emails:
            payload["cc"] = cc_emails

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            message = e.response.text[:500]
            logger.error(f"Resend rejected notice to {to_email}: {e.response.status_code} {message}")
            return SendResult(success=False, method="email", error=f"Email delivery failed: {message}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Email delivery to {to_email} failed: {e}")
            return SendResult(success=False, method="email", error=f"Email delivery failed: {e}")

        message_id = data.get("id")
        logger.info(f"Notice sent to {to_email} (id: {message_id})")
        return SendResult(success=True, method="email", message_id=message_id)
