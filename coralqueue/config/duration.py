"""Duration parsing for configuration values.

Queue settings such as ``poll_interval`` or ``stale_after`` accept either a
bare number of seconds, a compact form (``"30s"``, ``"5m"``, ``"1h30m"``), or
an ISO-8601 duration (``"PT5M"``, ``"P1D"``).
"""

import re
from typing import Union

_ISO_PATTERN = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$")
_COMPACT_PATTERN = re.compile(r"(\d+)\s*([smhd])")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""

    pass


def parse_duration(value: Union[str, int, float]) -> int:
    """Parse a duration to whole seconds.

    Args:
        value: Seconds as a number, or a duration string

    Returns:
        Duration in seconds (always > 0)

    Raises:
        DurationParseError: If the value is empty, malformed, or zero

    Examples:
        >>> parse_duration("5m")
        300
        >>> parse_duration("PT1H")
        3600
        >>> parse_duration(45)
        45
    """
    if isinstance(value, bool):
        raise DurationParseError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = int(value)
    else:
        text = value.strip()
        if not text:
            raise DurationParseError("Duration string cannot be empty")
        if text.isdigit():
            seconds = int(text)
        elif text.upper().startswith("P"):
            seconds = _parse_iso8601(text)
        else:
            seconds = _parse_compact(text)

    if seconds <= 0:
        raise DurationParseError(f"Duration must be greater than zero: {value!r}")

    return seconds


def _parse_iso8601(text: str) -> int:
    match = _ISO_PATTERN.match(text.upper())
    if not match or text.upper() in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected e.g. 'PT30S', 'PT5M', 'P1D'"
        )

    days, hours, minutes, seconds = match.groups()
    total = 0
    if days:
        total += int(days) * 86400
    if hours:
        total += int(hours) * 3600
    if minutes:
        total += int(minutes) * 60
    if seconds:
        total += int(float(seconds))
    return total


def _parse_compact(text: str) -> int:
    lowered = text.lower()
    matches = _COMPACT_PATTERN.findall(lowered)
    if not matches:
        raise DurationParseError(
            f"Invalid duration: '{text}'. Expected e.g. '30s', '5m', '1h' or '1h30m'"
        )

    # Reject leftovers such as "5x" or "m5"
    rebuilt = "".join(f"{num}{unit}" for num, unit in matches)
    if rebuilt != re.sub(r"\s+", "", lowered):
        raise DurationParseError(
            f"Invalid characters in duration: '{text}'. "
            "Use digits with s, m, h or d units"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in matches)


def validate_duration_range(
    seconds: int, min_seconds: int, max_seconds: int, label: str = "Duration"
) -> None:
    """Raise DurationParseError if ``seconds`` falls outside [min, max]."""
    if seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {format_seconds(seconds)}. Minimum is {format_seconds(min_seconds)}."
        )
    if seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {format_seconds(seconds)}. Maximum is {format_seconds(max_seconds)}."
        )


def format_seconds(seconds: int) -> str:
    """Render seconds in the largest whole unit (``"90 seconds"``, ``"2 hours"``)."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
