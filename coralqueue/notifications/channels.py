"""Send collaborators used by the dispatcher.

A channel delivers one notification and reports the outcome by raising (or
not). The dispatcher never looks inside the payload; channels do.
"""

from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, Optional

from coralqueue.config.environment import EnvironmentConfig
from coralqueue.config.models import EmailConfig
from coralqueue.domain.models import NotificationType
from coralqueue.logging import get_logger

from .payloads import build_notification_context, resolve_recipients
from .smtp_client import SMTPClient, build_sender_address
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")


class NotificationChannel(ABC):
    """Delivers a notification of a given type."""

    name = "channel"

    @abstractmethod
    def send(self, notification_type: NotificationType, payload: Dict[str, Any]) -> None:
        """Deliver the notification.

        Raises:
            DeliveryError: Transient failure, worth retrying
            PermanentDeliveryError: Retrying will not help
        """


class LoggingChannel(NotificationChannel):
    """Records what would have been sent instead of sending it.

    Used when SMTP is not configured so the queue still drains. Recipients
    are resolved exactly as EmailChannel resolves them.
    """

    name = "log"

    def __init__(
        self,
        admin_email: Optional[str] = None,
        renderer: Optional[TemplateRenderer] = None,
        store_name: str = "Coral Store",
    ):
        self.admin_email = admin_email
        self.renderer = renderer
        self.store_name = store_name

    def send(self, notification_type: NotificationType, payload: Dict[str, Any]) -> None:
        recipients = resolve_recipients(payload, self.admin_email)
        context = build_notification_context(notification_type, payload, self.store_name)
        subject = None
        if self.renderer is not None:
            subject = self.renderer.render(context)["subject"]

        logger.info(
            f"[Email Disabled] Would send {notification_type.value} notification",
            extra={
                "event": "notification.channel.logged",
                "notification_type": notification_type.value,
                "recipient": ", ".join(recipients),
                "subject": subject,
                "merged_count": context["merged_count"],
            },
        )


class EmailChannel(NotificationChannel):
    """Renders the Jinja2 templates and delivers through SMTP."""

    name = "email"

    def __init__(
        self,
        env_config: EnvironmentConfig,
        email_config: EmailConfig,
        renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
    ):
        self.env_config = env_config
        self.email_config = email_config
        self.renderer = renderer or TemplateRenderer()
        self.smtp_client = smtp_client or SMTPClient(env_config, use_tls=email_config.use_tls)

    def send(self, notification_type: NotificationType, payload: Dict[str, Any]) -> None:
        recipients = resolve_recipients(payload, self.env_config.admin_email)
        context = build_notification_context(
            notification_type, payload, self.email_config.store_name
        )
        rendered = self.renderer.render(context)

        message = EmailMessage()
        message["Subject"] = rendered["subject"]
        message["From"] = build_sender_address(self.env_config)
        message["To"] = ", ".join(recipients)
        message.set_content(rendered["text_body"])
        message.add_alternative(rendered["html_body"], subtype="html")

        self.smtp_client.send(message)

        logger.info(
            f"Sent {notification_type.value} notification to {', '.join(recipients)}",
            extra={
                "event": "notification.channel.sent",
                "notification_type": notification_type.value,
                "recipient_count": len(recipients),
                "merged_count": context["merged_count"],
            },
        )


def build_channel(
    env_config: EnvironmentConfig, email_config: EmailConfig
) -> NotificationChannel:
    """Pick the email channel when SMTP is configured, the logging channel otherwise."""
    if env_config.smtp_enabled:
        return EmailChannel(env_config, email_config)

    logger.warning(
        "SMTP_HOST not set; notifications will be logged instead of sent",
        extra={"event": "notification.channel.disabled"},
    )
    return LoggingChannel(
        admin_email=env_config.admin_email,
        renderer=TemplateRenderer(),
        store_name=email_config.store_name,
    )
