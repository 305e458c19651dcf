"""Soft checks that warn about risky but valid configuration."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def _seconds_or_none(value: Any):
    try:
        return parse_duration(value)
    except (DurationParseError, TypeError, AttributeError):
        return None


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    queue = config_dict.get("queue") or {}
    if isinstance(queue, dict):
        stale_after = _seconds_or_none(queue.get("stale_after", "5m"))
        if stale_after is not None and stale_after < 60:
            warning_messages.append(
                f"Short stale_after ({queue.get('stale_after')}) may reclaim jobs whose "
                "send is merely slow, causing duplicate deliveries"
            )

        max_attempts = queue.get("default_max_attempts")
        if isinstance(max_attempts, int) and max_attempts > 10:
            warning_messages.append(
                f"High default_max_attempts ({max_attempts}) keeps failing jobs around for a long time"
            )

        window = queue.get("default_batch_window")
        if window in (0, "0"):
            warning_messages.append(
                "default_batch_window is 0: jobs dispatch immediately and will rarely merge"
            )

    batching = config_dict.get("batching") or {}
    if isinstance(batching, dict) and batching.get("enabled") is False:
        warning_messages.append(
            "Batching is disabled: every request becomes its own notification"
        )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
