"""Time-of-day validation shared by every CKD Care component.

All "HH:mm" strings (reminder slots, end-of-day time, service input) are
checked and parsed here and nowhere else.
"""

from __future__ import annotations

import re
from typing import Final

from .exceptions import TimeFormatError

TIME_STRING_PATTERN: Final = re.compile(r"^([0-9]{2}):([0-9]{2})$")


def is_valid_time_string(value: object) -> bool:
    """Return True if value is exactly "HH:mm" with hour 00-23 and minute 00-59."""
    if not isinstance(value, str):
        return False

    match = TIME_STRING_PATTERN.fullmatch(value)
    if match is None:
        return False

    hour, minute = int(match.group(1)), int(match.group(2))
    return 0 <= hour <= 23 and 0 <= minute <= 59


def parse_time_string(value: object) -> tuple[int, int]:
    """Parse "HH:mm" into (hour, minute).

    Raises:
        TimeFormatError: if the value is not a valid time string.
    """
    if not is_valid_time_string(value):
        raise TimeFormatError(value)

    hour, minute = str(value).split(":")
    return int(hour), int(minute)
