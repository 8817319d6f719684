"""Diagnostic reporting for notification failures.

Events carry the operation, scope identifiers and error kind only; no
schedule names, dosages or other medical details.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from typing import Any

from homeassistant.core import HomeAssistant

from ..const import EVENT_NOTIFICATION_ERROR
from .exceptions import (
    IntegrityError,
    PlatformSchedulingError,
    StorageIOError,
    ValidationError,
)

_LOGGER = logging.getLogger(__name__)

ERROR_KIND_VALIDATION = "validation"
ERROR_KIND_INTEGRITY = "integrity"
ERROR_KIND_STORAGE_IO = "storage_io"
ERROR_KIND_PLATFORM = "platform_scheduling"
ERROR_KIND_UNKNOWN = "unknown"


def classify_error(error: BaseException | str) -> str:
    """Map an exception (or a preclassified kind string) to an error kind."""
    if isinstance(error, str):
        return error
    if isinstance(error, ValidationError):
        return ERROR_KIND_VALIDATION
    if isinstance(error, IntegrityError):
        return ERROR_KIND_INTEGRITY
    if isinstance(error, StorageIOError):
        return ERROR_KIND_STORAGE_IO
    if isinstance(error, PlatformSchedulingError):
        return ERROR_KIND_PLATFORM
    return ERROR_KIND_UNKNOWN


class NotificationErrorHandler:
    """Log notification failures and forward them to the event bus."""

    def __init__(self, hass: HomeAssistant | None = None) -> None:
        """Initialize with an optional Home Assistant instance."""
        self._hass = hass
        self.counts: Counter[str] = Counter()
        self.last_error: dict[str, Any] | None = None

    def report(
        self,
        operation: str,
        error: BaseException | str,
        *,
        user_id: str,
        pet_id: str,
        day: date | None = None,
        schedule_id: str | None = None,
        notification_id: int | None = None,
    ) -> None:
        """Record one failure."""
        error_kind = classify_error(error)
        self.counts[error_kind] += 1

        event: dict[str, Any] = {
            "operation": operation,
            "error_kind": error_kind,
            "user_id": user_id,
            "pet_id": pet_id,
        }
        if day is not None:
            event["date"] = day.isoformat()
        if schedule_id is not None:
            event["schedule_id"] = schedule_id
        if notification_id is not None:
            event["notification_id"] = notification_id
        self.last_error = event

        log = _LOGGER.info if error_kind == ERROR_KIND_INTEGRITY else _LOGGER.warning
        log(
            "Notification %s failed (%s) for user %s pet %s: %s",
            operation,
            error_kind,
            user_id,
            pet_id,
            error,
        )

        if self._hass is not None:
            self._hass.bus.async_fire(EVENT_NOTIFICATION_ERROR, event)
