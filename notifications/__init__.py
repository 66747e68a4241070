"""
Policyholder Notifications Package.

Templated, fire-and-forget messages to policyholders.
"""

from notifications.base import NotificationDispatcher, NotificationKind, NotificationPort
from notifications.channels import (
    LoggingNotifier,
    RecordingNotifier,
    SentNotification,
    WebhookNotifier,
)
from notifications.messages import TEMPLATES, render


__all__ = [
    "NotificationDispatcher",
    "NotificationKind",
    "NotificationPort",
    "LoggingNotifier",
    "RecordingNotifier",
    "SentNotification",
    "WebhookNotifier",
    "TEMPLATES",
    "render",
]
