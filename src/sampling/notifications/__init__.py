"""Outbound SMS/email notifications addressed by template name."""

from src.sampling.notifications.dispatcher import (
    LogOnlyNotificationDispatcher,
    NotificationDispatcher,
    WebhookNotificationDispatcher,
    build_dispatcher,
)

__all__ = [
    "LogOnlyNotificationDispatcher",
    "NotificationDispatcher",
    "WebhookNotificationDispatcher",
    "build_dispatcher",
]
