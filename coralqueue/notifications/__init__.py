"""Notification delivery for queued jobs.

- NotificationChannel: the send collaborator interface used by the dispatcher
- EmailChannel / LoggingChannel: SMTP delivery and the email-disabled fallback
- TemplateRenderer: Jinja2 rendering of subjects and bodies
- SMTPClient: smtplib wrapper with TLS/SSL support
- DeliveryError / PermanentDeliveryError: transient vs permanent failures
"""

from .channels import EmailChannel, LoggingChannel, NotificationChannel, build_channel
from .models import (
    DeliveryError,
    NotificationError,
    NotificationTemplateError,
    PermanentDeliveryError,
)
from .payloads import build_notification_context, resolve_recipients
from .smtp_client import SMTPClient, build_sender_address, normalize_recipient
from .templates import TemplateRenderer

__all__ = [
    # Channels
    "NotificationChannel",
    "EmailChannel",
    "LoggingChannel",
    "build_channel",
    # Exceptions
    "NotificationError",
    "DeliveryError",
    "PermanentDeliveryError",
    "NotificationTemplateError",
    # Components
    "TemplateRenderer",
    "SMTPClient",
    # Utilities
    "build_notification_context",
    "resolve_recipients",
    "build_sender_address",
    "normalize_recipient",
]
