"""Domain models for the notification queue."""

from .models import JobStatus, MergePolicy, NotificationJob, NotificationType, Resolution

__all__ = ["NotificationJob", "NotificationType", "JobStatus", "MergePolicy", "Resolution"]
