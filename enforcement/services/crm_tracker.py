"""
CRM Tracker

Posts best-effort lifecycle events to an external CRM webhook. Events use
the same envelope as outbound webhooks (event_id, event_type, timestamp,
data) and are always sent through the task dispatcher so a slow or failing
CRM never affects the request that produced the event.
"""

import asyncio
import json
import logging
from datetime import datetime
from uuid import uuid4

import httpx

from enforcement.config import get_settings
from enforcement.services.task_dispatcher import TaskDispatcher

logger = logging.getLogger(__name__)


class CRMTracker:
    """Delivers tracking events to ``crm_webhook_url``."""

    EVENT_NOTICE_GENERATED = "dmca.notice_generated"
    EVENT_BATCH_SUBMITTED = "dmca.batch_submitted"

    def __init__(self, webhook_url: str | None = None, timeout: float = 10.0, max_retries: int = 2):
        self.webhook_url = webhook_url if webhook_url is not None else get_settings().crm_webhook_url
        self.timeout = timeout
        self.max_retries = max_retries

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def track(self, dispatcher: TaskDispatcher, event_type: str, data: dict) -> None:
        """Queue an event for background delivery."""
        if not self.enabled:
            return
        dispatcher.fire_and_forget(self.send_event(event_type, data), f"crm:{event_type}")

    async def send_event(self, event_type: str, data: dict) -> bool:
        """Deliver one event with exponential backoff between retries."""
        event_data = {
            "event_id": str(uuid4()),
            "event_type": event_type,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data,
        }
        payload_json = json.dumps(event_data, default=str)
        headers = {"Content-Type": "application/json", "X-Event-Type": event_type}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for retry_count in range(self.max_retries + 1):
                try:
                    response = await client.post(self.webhook_url, content=payload_json, headers=headers)
                    response.raise_for_status()
                    return True
                except httpx.HTTPError as e:
                    logger.warning(f"CRM event {event_type} delivery attempt {retry_count + 1} failed: {e}")
                if retry_count < self.max_retries:
                    await asyncio.sleep(2 ** retry_count)

        logger.error(f"CRM event {event_type} dropped after {self.max_retries + 1} attempts")
        return False
