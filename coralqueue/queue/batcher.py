"""Batching of same-target notifications.

Each notification type names the payload field that identifies its target
(an order, a client, a coral, a bulletin audience). Requests of the same type
for the same target that arrive within the batch window are folded into one
job instead of producing one message each.
"""

from typing import Any, Dict, Mapping, Optional

from coralqueue.config.models import DEFAULT_MERGE_POLICIES
from coralqueue.domain.models import (
    DEFAULT_BATCH_WINDOW_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    MergePolicy,
    NotificationJob,
    NotificationType,
)
from coralqueue.logging import get_logger

from .store import EnqueueOutcome, JobStore, PayloadMerger

logger = get_logger(__name__, component="batcher")

TARGET_FIELDS: Dict[NotificationType, str] = {
    NotificationType.ORDER_CONFIRMATION: "orderId",
    NotificationType.STATUS_UPDATE: "orderId",
    NotificationType.CLIENT_REGISTRATION: "clientId",
    NotificationType.LOW_STOCK: "coralId",
    NotificationType.BULLETIN: "audience",
}

# Bulletins without an explicit audience go to every client
DEFAULT_TARGETS: Dict[NotificationType, str] = {
    NotificationType.BULLETIN: "clients",
}


def extract_target(notification_type: NotificationType, payload: Mapping[str, Any]) -> Optional[str]:
    """Return the target identifier for a payload, or None if it has none."""
    field = TARGET_FIELDS[notification_type]
    value = payload.get(field, DEFAULT_TARGETS.get(notification_type))
    if value is None or value == "":
        return None
    return str(value)


def correlation_key(notification_type: NotificationType, payload: Mapping[str, Any]) -> Optional[str]:
    """``"<TYPE>:<target>"``, e.g. ``"STATUS_UPDATE:1042"``; None if unkeyed."""
    target = extract_target(notification_type, payload)
    if target is None:
        return None
    return f"{notification_type.value}:{target}"


def replace_merger(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the latest payload, remembering the first one and the merge count."""
    if existing is None:
        return dict(incoming)

    first = existing.get("firstPayload")
    if first is None:
        first = {k: v for k, v in existing.items() if k != "mergedCount"}

    return {
        **incoming,
        "mergedCount": int(existing.get("mergedCount", 1)) + 1,
        "firstPayload": first,
    }


def accumulate_merger(field: str, target: str) -> PayloadMerger:
    """Build a merger that appends every request to an ``entries`` list."""

    def merge(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
        entries = list(existing.get("entries", [])) if existing else []
        entries.append(dict(incoming))
        return {field: target, "entries": entries}

    return merge


class Batcher:
    """Front door for collaborators that enqueue notifications.

    Args:
        store: Job store the merged or new jobs are written to
        policies: Merge policy per type; missing types use the defaults
        default_max_attempts: Used when the caller does not pass max_attempts
        default_batch_window: Seconds; used when the caller does not pass batch_window
        enabled: When False every request becomes its own immediately-due job
    """

    def __init__(
        self,
        store: JobStore,
        policies: Optional[Mapping[NotificationType, MergePolicy]] = None,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        default_batch_window: int = DEFAULT_BATCH_WINDOW_SECONDS,
        enabled: bool = True,
    ):
        self.store = store
        self.policies = {**DEFAULT_MERGE_POLICIES, **(policies or {})}
        self.default_max_attempts = default_max_attempts
        self.default_batch_window = default_batch_window
        self.enabled = enabled

    def merger_for(self, notification_type: NotificationType, target: str) -> PayloadMerger:
        if self.policies[notification_type] == MergePolicy.ACCUMULATE:
            return accumulate_merger(TARGET_FIELDS[notification_type], target)
        return replace_merger

    def enqueue(
        self,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        max_attempts: Optional[int] = None,
        batch_window: Optional[int] = None,
    ) -> NotificationJob:
        """Queue a notification, merging it into an open batch when possible.

        Args:
            notification_type: Kind of notification
            payload: Collaborator-owned data for rendering and addressing
            max_attempts: Attempt ceiling for a newly created job
            batch_window: Seconds a new batch stays open for merges

        Returns:
            The stored job (new or merged into)

        Raises:
            StoreUnavailable: If the job could not be persisted
            ValueError: If max_attempts or batch_window is out of range
        """
        notification_type = NotificationType(notification_type)
        max_attempts = self.default_max_attempts if max_attempts is None else max_attempts
        batch_window = self.default_batch_window if batch_window is None else batch_window

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if batch_window < 0:
            raise ValueError("batch_window cannot be negative")

        key = correlation_key(notification_type, payload)
        if not self.enabled or key is None or batch_window == 0:
            logger.debug(
                f"Not batching {notification_type.value} request",
                extra={
                    "event": "batcher.bypass",
                    "notification_type": notification_type.value,
                    "reason": "disabled" if not self.enabled else ("unkeyed" if key is None else "no_window"),
                },
            )
            return self.store.enqueue(
                notification_type,
                dict(payload),
                max_attempts=max_attempts,
                batch_window=batch_window,
            )

        outcome: EnqueueOutcome = self.store.merge_or_create(
            key,
            notification_type,
            payload,
            self.merger_for(notification_type, extract_target(notification_type, payload)),
            max_attempts=max_attempts,
            batch_window=batch_window,
        )
        return outcome.job
