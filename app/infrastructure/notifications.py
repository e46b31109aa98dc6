"""Notification collaborators for escalation summaries and outcomes."""

import asyncio
import logging
from abc import ABC, abstractmethod

from app.settings import settings

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers human-readable text to a contact address.

    Delivery retries and read receipts are the transport's concern.
    """

    @abstractmethod
    async def send(self, tenant_id: int, address: str, text: str) -> None:
        """Deliver text to an address on behalf of a tenant."""


class LoggingNotifier(Notifier):
    """Notifier that only logs; used when no transport is configured."""

    async def send(self, tenant_id: int, address: str, text: str) -> None:
        logger.info(
            f"Notification for tenant {tenant_id} to {address}",
            extra={"address": address, "text_length": len(text)},
        )


class TwilioSmsNotifier(Notifier):
    """Notifier that delivers over Twilio SMS."""

    def __init__(self, client=None):
        if client is None:
            from app.infrastructure.twilio_client import TwilioSmsClient

            client = TwilioSmsClient()
        self.client = client

    async def send(self, tenant_id: int, address: str, text: str) -> None:
        # The Twilio SDK is synchronous
        result = await asyncio.to_thread(self.client.send_sms, address, text)
        logger.info(
            f"SMS sent for tenant {tenant_id}",
            extra={"address": address, "message_sid": result.get("sid")},
        )


def get_notifier() -> Notifier:
    """Pick the notifier for the current configuration."""
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
        return TwilioSmsNotifier()
    return LoggingNotifier()


# Outstanding background deliveries; held so tasks are not garbage-collected
_pending_deliveries: set[asyncio.Task] = set()


def _on_delivery_done(task: asyncio.Task) -> None:
    _pending_deliveries.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background notification failed: {exc}", exc_info=exc)


def send_in_background(notifier: Notifier, tenant_id: int, address: str, text: str) -> asyncio.Task:
    """Schedule a delivery without waiting for it. Failures are logged."""
    task = asyncio.create_task(notifier.send(tenant_id, address, text))
    _pending_deliveries.add(task)
    task.add_done_callback(_on_delivery_done)
    return task


async def drain_background_deliveries() -> None:
    """Wait for outstanding background deliveries (shutdown and tests)."""
    if _pending_deliveries:
        await asyncio.gather(*list(_pending_deliveries), return_exceptions=True)
