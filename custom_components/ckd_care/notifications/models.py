"""Data models for CKD Care reminder scheduling."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from ..const import (
    CONF_ENABLE_NOTIFICATIONS,
    CONF_END_OF_DAY_ENABLED,
    CONF_END_OF_DAY_TIME,
    CONF_FOLLOWUP_ENABLED,
    CONF_FOLLOWUP_OFFSET_HOURS,
    CONF_GRACE_PERIOD_MINUTES,
    CONF_SNOOZE_ENABLED,
    CONF_SNOOZE_MINUTES,
    CONF_WEEKLY_SUMMARY_ENABLED,
    DEFAULT_ENABLE_NOTIFICATIONS,
    DEFAULT_END_OF_DAY_ENABLED,
    DEFAULT_END_OF_DAY_TIME,
    DEFAULT_FOLLOWUP_CUTOFF_HOUR,
    DEFAULT_FOLLOWUP_ENABLED,
    DEFAULT_FOLLOWUP_OFFSET_HOURS,
    DEFAULT_GRACE_PERIOD_MINUTES,
    DEFAULT_LIMIT_WARNING_THRESHOLD,
    DEFAULT_MAX_NOTIFICATIONS_PER_PET,
    DEFAULT_NEXT_MORNING_HOUR,
    DEFAULT_SNOOZE_ENABLED,
    DEFAULT_SNOOZE_MINUTES,
    DEFAULT_WEEKLY_SUMMARY_ENABLED,
    DEFAULT_WEEKLY_SUMMARY_TIME,
    DEFAULT_WEEKLY_SUMMARY_WEEKDAY,
    KIND_FOLLOWUP,
    KIND_INITIAL,
    KIND_SNOOZE,
    TREATMENT_FLUID,
    TREATMENT_MEDICATION,
)
from .exceptions import ValidationError
from .time_validation import is_valid_time_string

_LOGGER = logging.getLogger(__name__)

MAX_NOTIFICATION_ID = 0x7FFFFFFF


class TreatmentType(str, Enum):
    """Treatment a reminder belongs to."""

    MEDICATION = TREATMENT_MEDICATION
    FLUID = TREATMENT_FLUID

    @classmethod
    def parse(cls, value: object) -> TreatmentType:
        """Parse a raw value, raising ValidationError when unknown."""
        try:
            return cls(value)
        except ValueError as err:
            raise ValidationError(
                "treatment_type", value, "one of: medication, fluid"
            ) from err


class NotificationKind(str, Enum):
    """Role of a scheduled notification."""

    INITIAL = KIND_INITIAL
    FOLLOWUP = KIND_FOLLOWUP
    SNOOZE = KIND_SNOOZE

    @classmethod
    def parse(cls, value: object) -> NotificationKind:
        """Parse a raw value, raising ValidationError when unknown."""
        try:
            return cls(value)
        except ValueError as err:
            raise ValidationError(
                "kind", value, "one of: initial, followup, snooze"
            ) from err


@dataclass(frozen=True)
class ScheduledNotificationEntry:
    """One platform-scheduled notification recorded in the daily index.

    Instances are immutable and validated on construction. Use create() to
    build an entry from raw strings and from_json() to read a persisted row.
    """

    notification_id: int
    schedule_id: str
    treatment_type: TreatmentType
    time_slot: str
    kind: NotificationKind

    def __post_init__(self) -> None:
        """Reject any field that does not satisfy its constraint."""
        if (
            not isinstance(self.notification_id, int)
            or isinstance(self.notification_id, bool)
            or not 0 <= self.notification_id <= MAX_NOTIFICATION_ID
        ):
            raise ValidationError(
                "notification_id", self.notification_id, "integer in 0..2147483647"
            )
        if not isinstance(self.schedule_id, str) or not self.schedule_id.strip():
            raise ValidationError("schedule_id", self.schedule_id, "non-empty string")
        if not isinstance(self.treatment_type, TreatmentType):
            raise ValidationError(
                "treatment_type", self.treatment_type, "TreatmentType member"
            )
        if not is_valid_time_string(self.time_slot):
            raise ValidationError("time_slot", self.time_slot, "HH:mm (00:00-23:59)")
        if not isinstance(self.kind, NotificationKind):
            raise ValidationError("kind", self.kind, "NotificationKind member")

    @classmethod
    def create(
        cls,
        notification_id: int,
        schedule_id: str,
        treatment_type: str | TreatmentType,
        time_slot: str,
        kind: str | NotificationKind,
    ) -> ScheduledNotificationEntry:
        """Validate raw values and build an entry."""
        return cls(
            notification_id=notification_id,
            schedule_id=schedule_id,
            treatment_type=TreatmentType.parse(treatment_type),
            time_slot=time_slot,
            kind=NotificationKind.parse(kind),
        )

    @classmethod
    def from_json(cls, data: Any) -> ScheduledNotificationEntry | None:
        """Build an entry from a persisted row, or None if the row is invalid."""
        if not isinstance(data, Mapping):
            return None

        try:
            return cls.create(
                notification_id=data["notificationId"],
                schedule_id=data["scheduleId"],
                treatment_type=data["treatmentType"],
                time_slot=data["timeSlot"],
                kind=data["kind"],
            )
        except (KeyError, ValidationError) as err:
            _LOGGER.debug("Skipping invalid notification index row: %s", err)
            return None

    def to_json(self) -> dict[str, Any]:
        """Return the persisted row representation."""
        return {
            "notificationId": self.notification_id,
            "scheduleId": self.schedule_id,
            "treatmentType": self.treatment_type.value,
            "timeSlot": self.time_slot,
            "kind": self.kind.value,
        }

    @property
    def slot_key(self) -> tuple[str, str]:
        """Return the (schedule_id, time_slot) pair this entry belongs to."""
        return (self.schedule_id, self.time_slot)

    def sort_key(self) -> tuple[int, str, str, str]:
        """Return the canonical ordering key."""
        return (self.notification_id, self.schedule_id, self.time_slot, self.kind.value)


def sorted_entries(
    entries: Iterable[ScheduledNotificationEntry],
) -> list[ScheduledNotificationEntry]:
    """Return entries in canonical order (by notification id)."""
    return sorted(entries, key=ScheduledNotificationEntry.sort_key)


@dataclass(frozen=True)
class NotificationIndex:
    """Entries currently scheduled for one (user, pet, day) scope."""

    entries: frozenset[ScheduledNotificationEntry] = frozenset()
    checksum: str | None = None
    corrupt: bool = False

    @classmethod
    def empty(cls, corrupt: bool = False) -> NotificationIndex:
        """Return an index without entries."""
        return cls(entries=frozenset(), checksum=None, corrupt=corrupt)

    def __post_init__(self) -> None:
        """Enforce notification id uniqueness."""
        seen: set[int] = set()
        for entry in self.entries:
            if entry.notification_id in seen:
                raise ValidationError(
                    "entries", entry.notification_id, "unique notification ids"
                )
            seen.add(entry.notification_id)

    def __len__(self) -> int:
        """Return the number of entries."""
        return len(self.entries)


def _read_bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    return value if isinstance(value, bool) else default


@dataclass(frozen=True)
class NotificationSettings:
    """Per-user notification preferences gating what gets scheduled."""

    enable_notifications: bool = DEFAULT_ENABLE_NOTIFICATIONS
    weekly_summary_enabled: bool = DEFAULT_WEEKLY_SUMMARY_ENABLED
    snooze_enabled: bool = DEFAULT_SNOOZE_ENABLED
    end_of_day_enabled: bool = DEFAULT_END_OF_DAY_ENABLED
    end_of_day_time: str = DEFAULT_END_OF_DAY_TIME
    followup_enabled: bool = DEFAULT_FOLLOWUP_ENABLED

    @classmethod
    def from_json(cls, data: Any) -> NotificationSettings:
        """Read settings from camelCase JSON, defaulting missing or invalid fields."""
        if not isinstance(data, Mapping):
            return cls()

        end_of_day_time = data.get("endOfDayTime", DEFAULT_END_OF_DAY_TIME)
        if not is_valid_time_string(end_of_day_time):
            _LOGGER.warning(
                "Invalid end-of-day time %r in settings, using %s",
                end_of_day_time,
                DEFAULT_END_OF_DAY_TIME,
            )
            end_of_day_time = DEFAULT_END_OF_DAY_TIME

        return cls(
            enable_notifications=_read_bool(
                data, "enableNotifications", DEFAULT_ENABLE_NOTIFICATIONS
            ),
            weekly_summary_enabled=_read_bool(
                data, "weeklySummaryEnabled", DEFAULT_WEEKLY_SUMMARY_ENABLED
            ),
            snooze_enabled=_read_bool(data, "snoozeEnabled", DEFAULT_SNOOZE_ENABLED),
            end_of_day_enabled=_read_bool(
                data, "endOfDayEnabled", DEFAULT_END_OF_DAY_ENABLED
            ),
            end_of_day_time=end_of_day_time,
            followup_enabled=_read_bool(
                data, "followupEnabled", DEFAULT_FOLLOWUP_ENABLED
            ),
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> NotificationSettings:
        """Read settings from config entry options (snake_case keys)."""
        return cls.from_json(
            {
                "enableNotifications": options.get(CONF_ENABLE_NOTIFICATIONS),
                "weeklySummaryEnabled": options.get(CONF_WEEKLY_SUMMARY_ENABLED),
                "snoozeEnabled": options.get(CONF_SNOOZE_ENABLED),
                "endOfDayEnabled": options.get(CONF_END_OF_DAY_ENABLED),
                "endOfDayTime": options.get(CONF_END_OF_DAY_TIME, DEFAULT_END_OF_DAY_TIME),
                "followupEnabled": options.get(CONF_FOLLOWUP_ENABLED),
            }
        )

    def to_json(self) -> dict[str, Any]:
        """Return the camelCase JSON representation."""
        return {
            "enableNotifications": self.enable_notifications,
            "weeklySummaryEnabled": self.weekly_summary_enabled,
            "snoozeEnabled": self.snooze_enabled,
            "endOfDayEnabled": self.end_of_day_enabled,
            "endOfDayTime": self.end_of_day_time,
            "followupEnabled": self.followup_enabled,
        }


@dataclass(frozen=True)
class ReminderPolicy:
    """Timing policy for follow-ups, snoozes, limits and summaries."""

    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES
    followup_offset_hours: int = DEFAULT_FOLLOWUP_OFFSET_HOURS
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
    max_notifications_per_pet: int = DEFAULT_MAX_NOTIFICATIONS_PER_PET
    limit_warning_threshold: int = DEFAULT_LIMIT_WARNING_THRESHOLD
    followup_cutoff_hour: int = DEFAULT_FOLLOWUP_CUTOFF_HOUR
    next_morning_hour: int = DEFAULT_NEXT_MORNING_HOUR
    weekly_summary_weekday: int = DEFAULT_WEEKLY_SUMMARY_WEEKDAY
    weekly_summary_time: str = DEFAULT_WEEKLY_SUMMARY_TIME

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> ReminderPolicy:
        """Read the configurable offsets from config entry options."""

        def _int(key: str, default: int) -> int:
            try:
                return int(options.get(key, default))
            except (TypeError, ValueError):
                return default

        return cls(
            grace_period_minutes=_int(CONF_GRACE_PERIOD_MINUTES, DEFAULT_GRACE_PERIOD_MINUTES),
            followup_offset_hours=_int(CONF_FOLLOWUP_OFFSET_HOURS, DEFAULT_FOLLOWUP_OFFSET_HOURS),
            snooze_minutes=_int(CONF_SNOOZE_MINUTES, DEFAULT_SNOOZE_MINUTES),
        )


@dataclass(frozen=True)
class NotificationContent:
    """Privacy-generic content handed to the notification platform."""

    title: str
    body: str
    channel: str
    payload: str | None = None


@dataclass(frozen=True)
class PendingNotification:
    """A notification the platform reports as scheduled but not yet delivered."""

    notification_id: int
    fire_at: datetime | None = None
    payload: str | None = None

    def decoded_payload(self) -> dict[str, Any] | None:
        """Return the JSON payload as a dict, or None when absent or malformed."""
        if not self.payload:
            return None
        try:
            decoded = json.loads(self.payload)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    scheduled: int = 0
    immediate: int = 0
    missed: int = 0
    cancelled: int = 0
    failed: int = 0
    unchanged: int = 0
    rebuilt: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def platform_calls(self) -> int:
        """Return how many schedule/cancel calls were attempted."""
        return self.scheduled + self.immediate + self.cancelled + self.failed

    def as_dict(self) -> dict[str, Any]:
        """Return a plain dict for service responses and diagnostics."""
        return {
            "scheduled": self.scheduled,
            "immediate": self.immediate,
            "missed": self.missed,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "unchanged": self.unchanged,
            "rebuilt": self.rebuilt,
            "errors": list(self.errors),
        }


class ScheduleFrequency(str, Enum):
    """Recurrence rule of a treatment schedule."""

    ONCE_DAILY = "once_daily"
    TWICE_DAILY = "twice_daily"
    THRICE_DAILY = "thrice_daily"
    EVERY_OTHER_DAY = "every_other_day"
    EVERY_3_DAYS = "every_3_days"

    @property
    def interval_days(self) -> int:
        """Return how many days apart treatment days are."""
        if self is ScheduleFrequency.EVERY_OTHER_DAY:
            return 2
        if self is ScheduleFrequency.EVERY_3_DAYS:
            return 3
        return 1

    @classmethod
    def parse(cls, value: object) -> ScheduleFrequency:
        """Parse a raw value, raising ValidationError when unknown."""
        try:
            return cls(value)
        except ValueError as err:
            raise ValidationError(
                "frequency", value, "one of: " + ", ".join(f.value for f in cls)
            ) from err


@dataclass(frozen=True)
class Schedule:
    """A treatment schedule as cached from the pet profile.

    ``name`` is kept for the caller's own bookkeeping and never placed in
    notification content.
    """

    id: str
    treatment_type: TreatmentType
    frequency: ScheduleFrequency
    reminder_times: tuple[str, ...]
    is_active: bool = True
    created_at: date | None = None
    name: str = ""

    def __post_init__(self) -> None:
        """Validate identifiers and reminder times."""
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValidationError("schedule_id", self.id, "non-empty string")
        if not isinstance(self.treatment_type, TreatmentType):
            raise ValidationError("treatment_type", self.treatment_type, "TreatmentType member")
        if not isinstance(self.frequency, ScheduleFrequency):
            raise ValidationError("frequency", self.frequency, "ScheduleFrequency member")
        for reminder_time in self.reminder_times:
            if not is_valid_time_string(reminder_time):
                raise ValidationError("reminder_times", reminder_time, "HH:mm (00:00-23:59)")

    def reminder_times_on_date(self, day: date) -> list[str]:
        """Return the reminder slots that fall on day."""
        interval = self.frequency.interval_days
        if interval > 1:
            if self.created_at is None:
                return []
            days_since_created = (day - self.created_at).days
            if days_since_created < 0 or days_since_created % interval:
                return []
        return list(dict.fromkeys(self.reminder_times))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Schedule:
        """Build a schedule from stored or service data.

        Raises:
            ValidationError: if any field is missing or invalid.
        """
        created_at = data.get("created_at")
        if isinstance(created_at, str) and created_at:
            try:
                created_at = date.fromisoformat(created_at)
            except ValueError as err:
                raise ValidationError("created_at", created_at, "YYYY-MM-DD") from err
        elif not isinstance(created_at, date):
            created_at = None

        reminder_times = data.get("reminder_times") or ()
        if isinstance(reminder_times, str):
            reminder_times = (reminder_times,)

        return cls(
            id=str(data.get("id") or ""),
            treatment_type=TreatmentType.parse(data.get("treatment_type")),
            frequency=ScheduleFrequency.parse(data.get("frequency")),
            reminder_times=tuple(reminder_times),
            is_active=bool(data.get("is_active", True)),
            created_at=created_at,
            name=str(data.get("name") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the stored representation."""
        return {
            "id": self.id,
            "treatment_type": self.treatment_type.value,
            "frequency": self.frequency.value,
            "reminder_times": list(self.reminder_times),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "name": self.name,
        }
