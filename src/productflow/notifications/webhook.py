"""Webhook notifier for external workflow integration.

POSTs every notification event as JSON to a configured URL. Non-2xx
responses and transport errors are logged and reported as ``False`` by
``send``; ``notify`` raises so the engine's own guard logs the failure.
"""

from __future__ import annotations

import httpx

from productflow.config import NotificationConfig
from productflow.logging import get_logger
from productflow.notifications.base import NotificationEvent


class WebhookDeliveryError(Exception):
    """Raised by ``notify`` when a webhook delivery fails."""


class WebhookNotifier:
    """Client for sending notification events to an HTTP webhook."""

    def __init__(
        self,
        config: NotificationConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.webhook_url:
            raise ValueError("NotificationConfig.webhook_url is required for WebhookNotifier")
        self.config = config
        self.logger = get_logger(__name__)
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, event: NotificationEvent) -> bool:
        """Send one event to the webhook.

        Returns True if successful, False otherwise.
        """
        try:
            client = await self._get_client()
            headers = {"Content-Type": "application/json"}
            if self.config.auth_header:
                headers["Authorization"] = self.config.auth_header

            response = await client.post(
                self.config.webhook_url,
                json=event.to_dict(),
                headers=headers,
            )

            if response.is_success:
                self.logger.info(
                    "webhook_sent",
                    event_type=event.event_type.value,
                    status_code=response.status_code,
                )
                return True
            self.logger.warning(
                "webhook_failed",
                event_type=event.event_type.value,
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            return False

        except httpx.RequestError as e:
            self.logger.error(
                "webhook_error",
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def notify(self, event: NotificationEvent) -> None:
        if not await self.send(event):
            raise WebhookDeliveryError(
                f"Webhook delivery failed for {event.event_type.value}"
            )
