"""Notification webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from dataclasses import asdict
from referral_ledger.config import settings
from referral_ledger.domain.models import LedgerEvent
from referral_ledger.infrastructure.observability.metrics import notification_latency_histogram, notification_failure_counter


class NotificationClient:
    """Client for sending ledger events to the notification sink"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def send_event(self, event: LedgerEvent) -> None:
        """
        Deliver one event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures
        - Raises after the last attempt
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=asdict(event),
                            timeout=10.0,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

    async def notify(self, event: LedgerEvent) -> None:
        """
        Fire-and-forget delivery.

        Runs after the ledger transaction committed; a failed delivery is
        logged and never reaches the caller.
        """
        try:
            await self.send_event(event)
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logging.warning(
                f"Notification delivery failed: {e}",
                extra={"event": event.event, "agent_id": event.agent_id},
            )
