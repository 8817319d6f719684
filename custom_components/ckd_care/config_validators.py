"""Validators for CKD Care config flow and service input."""

from __future__ import annotations

import re

import voluptuous as vol

from .const import (
    FOLLOWUP_OFFSET_HOURS_MAX,
    FOLLOWUP_OFFSET_HOURS_MIN,
    GRACE_PERIOD_MINUTES_MAX,
    GRACE_PERIOD_MINUTES_MIN,
    SNOOZE_MINUTES_MAX,
    SNOOZE_MINUTES_MIN,
)
from .notifications.time_validation import is_valid_time_string


def validate_service_string(value: str) -> bool:
    """Validate Home Assistant service string format domain.service."""
    raw = str(value or "").strip()
    if not raw:
        return False
    return bool(re.fullmatch(r"[a-z0-9_]+\.[a-z0-9_]+", raw))


def validate_identifier(value: str) -> bool:
    """Validate a user or pet id.

    Ids become part of storage keys and notification ids, so the pipe
    separator and surrounding whitespace are not allowed.
    """
    raw = str(value or "")
    return bool(raw.strip()) and raw == raw.strip() and "|" not in raw


def validate_grace_period(value: int) -> bool:
    """Validate grace period bounds in minutes."""
    return GRACE_PERIOD_MINUTES_MIN <= int(value) <= GRACE_PERIOD_MINUTES_MAX


def validate_followup_offset(value: int) -> bool:
    """Validate follow-up offset bounds in hours."""
    return FOLLOWUP_OFFSET_HOURS_MIN <= int(value) <= FOLLOWUP_OFFSET_HOURS_MAX


def validate_snooze_minutes(value: int) -> bool:
    """Validate snooze duration bounds in minutes."""
    return SNOOZE_MINUTES_MIN <= int(value) <= SNOOZE_MINUTES_MAX


def time_string(value: object) -> str:
    """Voluptuous validator for "HH:mm" strings."""
    if not is_valid_time_string(value):
        raise vol.Invalid(f"Invalid time {value!r}, expected HH:mm (00:00-23:59)")
    return str(value)


def identifier(value: object) -> str:
    """Voluptuous validator for user, pet and schedule ids."""
    if not isinstance(value, str) or not validate_identifier(value):
        raise vol.Invalid(f"Invalid identifier {value!r}")
    return value
