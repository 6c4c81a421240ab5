"""Notification dispatch -- SMS and email by template name plus context.

Rendering and delivery belong to the notification service; this side only
names a template and hands over the values it needs.

Exports:
    NotificationDispatcher: Abstract interface used by activation effects.
    WebhookNotificationDispatcher: POSTs to NOTIFICATIONS_WEBHOOK_URL with
        retry logic (tenacity, 3 attempts, exponential backoff 1-10s).
    LogOnlyNotificationDispatcher: Logs instead of sending (no service configured).
    build_dispatcher: Picks an implementation from settings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.sampling.config import Settings, get_settings

logger = structlog.get_logger(__name__)

_notify_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class NotificationDispatcher(ABC):
    """Sends templated SMS and email messages."""

    @abstractmethod
    async def send_sms(self, to: str, template: str, context: dict[str, Any]) -> None:
        """Send an SMS rendered from template with context."""
        ...

    @abstractmethod
    async def send_email(self, to: str, template: str, context: dict[str, Any]) -> None:
        """Send an email rendered from template with context."""
        ...


class LogOnlyNotificationDispatcher(NotificationDispatcher):
    """Dispatcher for environments without a notification service."""

    async def send_sms(self, to: str, template: str, context: dict[str, Any]) -> None:
        logger.info("notifications.sms_logged", to=to, template=template)

    async def send_email(self, to: str, template: str, context: dict[str, Any]) -> None:
        logger.info("notifications.email_logged", to=to, template=template)


class WebhookNotificationDispatcher(NotificationDispatcher):
    """Forwards notifications to an HTTP notification service.

    Args:
        url: Endpoint accepting {channel, to, template, context} JSON.
        api_key: Bearer token for the service (optional).
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = timeout
        self._transport = transport

    @_notify_retry
    async def _post(self, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(
            headers=self._headers, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(self._url, json=payload)
            response.raise_for_status()

    async def _send(
        self, channel: str, to: str, template: str, context: dict[str, Any]
    ) -> None:
        await self._post(
            {"channel": channel, "to": to, "template": template, "context": context}
        )
        logger.info(
            "notifications.sent",
            channel=channel,
            to=to,
            template=template,
        )

    async def send_sms(self, to: str, template: str, context: dict[str, Any]) -> None:
        await self._send("sms", to, template, context)

    async def send_email(self, to: str, template: str, context: dict[str, Any]) -> None:
        await self._send("email", to, template, context)


def build_dispatcher(settings: Settings | None = None) -> NotificationDispatcher:
    settings = settings or get_settings()
    if not settings.NOTIFICATIONS_WEBHOOK_URL:
        logger.warning("notifications.webhook_not_configured")
        return LogOnlyNotificationDispatcher()
    return WebhookNotificationDispatcher(
        url=settings.NOTIFICATIONS_WEBHOOK_URL,
        api_key=settings.NOTIFICATIONS_API_KEY,
    )
