"""
Deadline parsing for agent calls.

Durations arrive from the environment or from tool arguments, either as
Go-style duration strings ("30s", "1m30s", "500ms") or as bare seconds.
"""

import logging
import math
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

MIN_TIMEOUT = 1.0
MAX_TIMEOUT = 300.0
DEFAULT_EXEC_TIMEOUT = 60.0
DEFAULT_AGGREGATE_TIMEOUT = 75.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Args:
        value: Duration string ("45s", "1m30s", "250ms"), bare seconds
            ("45", "2.5") or a number

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value is empty, malformed or not finite
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("empty duration")

        sign = 1.0
        if text[0] in "+-":
            sign = -1.0 if text[0] == "-" else 1.0
            text = text[1:]

        try:
            seconds = sign * float(text)
        except ValueError:
            seconds = sign * _parse_units(text, value)

    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration: {value!r}")
    return seconds


def _parse_units(text: str, original: str) -> float:
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration: {original!r}")
    return total


def bounded_timeout(
    value: Optional[Union[str, int, float]],
    default: float,
    name: str = "timeout",
) -> float:
    """
    Parse a timeout and keep it within [MIN_TIMEOUT, MAX_TIMEOUT].

    Malformed or out-of-range values fall back to the default and log a
    warning. Missing values return the default silently.

    Args:
        value: Raw value (None or "" means unset)
        default: Fallback in seconds
        name: Setting name used in the warning

    Returns:
        Timeout in seconds
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default

    try:
        seconds = parse_duration(value)
    except ValueError:
        logger.warning(f"Invalid {name} {value!r}, using default {default}s")
        return default

    if seconds < MIN_TIMEOUT or seconds > MAX_TIMEOUT:
        logger.warning(
            f"{name} {value!r} outside [{MIN_TIMEOUT:g}s, {MAX_TIMEOUT:g}s], "
            f"using default {default}s"
        )
        return default

    return seconds
