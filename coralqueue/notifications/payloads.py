"""Template context and recipient resolution for queued payloads.

Payloads are owned by the enqueuing collaborator. Merged jobs come in two
shapes, depending on the batching policy:
- replace: the latest payload plus ``mergedCount`` and ``firstPayload``
- accumulate: ``{<target>: ..., "entries": [payload, ...]}``
"""

from typing import Any, Dict, List, Optional

from coralqueue.domain.models import NotificationType

from .models import PermanentDeliveryError
from .smtp_client import normalize_recipient


def payload_entries(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Individual requests folded into a payload, oldest first."""
    entries = payload.get("entries")
    if isinstance(entries, list):
        return [entry for entry in entries if isinstance(entry, dict)]
    return [payload]


def build_notification_context(
    notification_type: NotificationType, payload: Dict[str, Any], store_name: str
) -> Dict[str, Any]:
    """Build the Jinja2 context for one outgoing notification.

    Returns:
        Dictionary with:
        - type: Notification type value, used by templates to branch
        - store_name: Shop name for subjects and signatures
        - payload: The stored payload as-is
        - entries: Requests merged into this notification (at least one)
        - merged_count: How many requests this notification covers
        - first_payload: The request that opened the batch (replace policy)
        - is_test: Whether this is an operator test send
    """
    entries = payload_entries(payload)
    merged_count = payload.get("mergedCount")
    if not isinstance(merged_count, int) or merged_count < 1:
        merged_count = len(entries)

    return {
        "type": notification_type.value,
        "store_name": store_name,
        "payload": payload,
        "entries": entries,
        "merged_count": merged_count,
        "first_payload": payload.get("firstPayload") or entries[0],
        "is_test": bool(payload.get("test")),
    }


def resolve_recipients(payload: Dict[str, Any], admin_email: Optional[str]) -> List[str]:
    """Work out who receives a notification.

    Order of precedence: ``recipients`` list, ``recipient``, the first merged
    entry's recipient, then the admin address. Low-stock alerts carry no
    recipient and so always land with the admin.

    Raises:
        PermanentDeliveryError: If an address is invalid or nobody can receive it
    """
    raw: List[str] = []
    if isinstance(payload.get("recipients"), list):
        raw = [str(r) for r in payload["recipients"] if r]
    elif payload.get("recipient"):
        raw = [str(payload["recipient"])]
    else:
        for entry in payload_entries(payload):
            if entry.get("recipient"):
                raw = [str(entry["recipient"])]
                break

    if not raw and admin_email:
        raw = [admin_email]

    if not raw:
        raise PermanentDeliveryError(
            "No recipient in payload and NOTIFY_ADMIN_EMAIL is not configured"
        )

    return [normalize_recipient(address) for address in raw]
