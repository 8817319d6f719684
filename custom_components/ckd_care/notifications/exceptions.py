"""Exceptions raised by the CKD Care notification core."""

from __future__ import annotations

from homeassistant.exceptions import HomeAssistantError


class CkdCareError(HomeAssistantError):
    """Base error for CKD Care."""


class ValidationError(CkdCareError, ValueError):
    """Raised when a value fails construction-time validation.

    Carries the offending field name and the expected constraint so the
    message can be surfaced to whoever supplied the value.
    """

    def __init__(self, field: str, value: object, expected: str) -> None:
        """Initialize with the failing field, value and constraint."""
        self.field = field
        self.value = value
        self.expected = expected
        super().__init__(f"Invalid {field} {value!r}: expected {expected}")


class TimeFormatError(ValidationError):
    """Raised when a time-of-day string is not a valid "HH:mm" value."""

    def __init__(self, value: object, expected: str = "HH:mm (00:00-23:59)") -> None:
        """Initialize with the offending string."""
        super().__init__("time", value, expected)


class IntegrityError(CkdCareError):
    """Raised when a persisted notification index fails its checksum."""


class StorageIOError(CkdCareError):
    """Raised when local storage cannot be read or written."""


class PlatformSchedulingError(CkdCareError):
    """Raised when the notification platform refuses a schedule or cancel call."""

    def __init__(self, notification_id: int | None, reason: str) -> None:
        """Initialize with the affected notification id."""
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(f"Notification {notification_id} rejected: {reason}")
