"""Exceptions raised by notification channels.

The dispatcher only distinguishes two outcomes of a failed send:
- DeliveryError: transient, the job is rescheduled with backoff
- PermanentDeliveryError: retrying cannot help, the job goes straight to FAILED
"""


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class DeliveryError(NotificationError):
    """A send failed for a reason that may clear up (network, SMTP 4xx, rate limit)."""

    pass


class PermanentDeliveryError(DeliveryError):
    """A send failed in a way that retrying will not fix (bad recipient, rejected content)."""

    pass


class NotificationTemplateError(PermanentDeliveryError):
    """Raised when a template cannot be rendered from the job payload."""

    pass
