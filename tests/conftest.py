"""Shared test doubles for CKD Care tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from custom_components.ckd_care.notifications.exceptions import (
    PlatformSchedulingError,
    StorageIOError,
)
from custom_components.ckd_care.notifications.models import (
    NotificationContent,
    NotificationSettings,
    PendingNotification,
    ReminderPolicy,
    Schedule,
    ScheduleFrequency,
    TreatmentType,
)
from custom_components.ckd_care.notifications.plugin import ReminderPlugin
from custom_components.ckd_care.notifications.providers import (
    CachedScheduleProvider,
    SettingsProvider,
)
from custom_components.ckd_care.notifications.storage import KeyValueStorage

TEST_DAY = date(2024, 3, 13)  # a Wednesday


def at(hour: int, minute: int = 0, day: date = TEST_DAY) -> datetime:
    """Return an aware datetime on the test day."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


class MutableClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class MemoryKeyValueStorage(KeyValueStorage):
    """In-memory key-value storage that can be told to fail."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def async_get_string(self, key: str) -> str | None:
        if self.fail_reads:
            raise StorageIOError("read failed")
        return self.values.get(key)

    async def async_set_string(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageIOError("write failed")
        self.writes += 1
        self.values[key] = value

    async def async_remove(self, key: str) -> None:
        if self.fail_writes:
            raise StorageIOError("write failed")
        self.values.pop(key, None)

    async def async_keys(self) -> list[str]:
        return list(self.values)


class YieldingKeyValueStorage(MemoryKeyValueStorage):
    """Memory storage that suspends on every read and write like real I/O."""

    async def async_get_string(self, key: str) -> str | None:
        await asyncio.sleep(0)
        return await super().async_get_string(key)

    async def async_set_string(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        await super().async_set_string(key, value)


class FakeReminderPlugin(ReminderPlugin):
    """Records every platform call; selected ids can be made to fail."""

    def __init__(self) -> None:
        self.pending: dict[int, PendingNotification] = {}
        self.contents: dict[int, NotificationContent] = {}
        self.scheduled: list[tuple[int, datetime]] = []
        self.cancelled: list[int] = []
        self.fail_schedule: set[int] = set()
        self.fail_cancel: set[int] = set()
        self.fail_pending = False

    @property
    def calls(self) -> int:
        return len(self.scheduled) + len(self.cancelled)

    def reset_calls(self) -> None:
        self.scheduled.clear()
        self.cancelled.clear()

    async def async_schedule(
        self,
        notification_id: int,
        fire_at: datetime,
        content: NotificationContent,
    ) -> None:
        if notification_id in self.fail_schedule:
            raise PlatformSchedulingError(notification_id, "permission_denied")
        self.scheduled.append((notification_id, fire_at))
        self.contents[notification_id] = content
        self.pending[notification_id] = PendingNotification(
            notification_id=notification_id, fire_at=fire_at, payload=content.payload
        )

    async def async_cancel(self, notification_id: int) -> None:
        if notification_id in self.fail_cancel:
            raise PlatformSchedulingError(notification_id, "permission_denied")
        self.cancelled.append(notification_id)
        self.pending.pop(notification_id, None)

    async def async_get_pending(self) -> list[PendingNotification]:
        if self.fail_pending:
            raise PlatformSchedulingError(None, "unavailable")
        return list(self.pending.values())


class StaticScheduleProvider(CachedScheduleProvider):
    """Schedule provider over plain lists."""

    def __init__(
        self,
        medication: list[Schedule] | None = None,
        fluid: Schedule | None = None,
        pet_name: str | None = "Mittens",
    ) -> None:
        self.medication = list(medication or [])
        self.fluid = fluid
        self.pet_name = pet_name
        self.logged: dict[date, set[tuple[str, str]]] = {}

    def get_medication_schedules(self) -> list[Schedule]:
        return list(self.medication)

    def get_fluid_schedule(self) -> Schedule | None:
        return self.fluid

    def get_logged_slots(self, day: date) -> set[tuple[str, str]]:
        return set(self.logged.get(day, set()))

    def get_pet_name(self) -> str | None:
        return self.pet_name

    def log(self, schedule_id: str, time_slot: str, day: date = TEST_DAY) -> None:
        self.logged.setdefault(day, set()).add((schedule_id, time_slot))


class StaticSettingsProvider(SettingsProvider):
    """Settings provider over fixed values."""

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        policy: ReminderPolicy | None = None,
    ) -> None:
        self.settings = settings or NotificationSettings()
        self.policy = policy or ReminderPolicy()

    def get_settings(self) -> NotificationSettings:
        return self.settings

    def get_policy(self) -> ReminderPolicy:
        return self.policy


def medication_schedule(
    schedule_id: str = "med-a",
    times: tuple[str, ...] = ("08:00",),
    frequency: ScheduleFrequency = ScheduleFrequency.ONCE_DAILY,
    **kwargs,
) -> Schedule:
    """Build an active medication schedule."""
    return Schedule(
        id=schedule_id,
        treatment_type=TreatmentType.MEDICATION,
        frequency=frequency,
        reminder_times=times,
        **kwargs,
    )


def fluid_schedule(
    schedule_id: str = "fluid-a",
    times: tuple[str, ...] = ("19:00",),
    **kwargs,
) -> Schedule:
    """Build an active fluid schedule."""
    return Schedule(
        id=schedule_id,
        treatment_type=TreatmentType.FLUID,
        frequency=ScheduleFrequency.ONCE_DAILY,
        reminder_times=times,
        **kwargs,
    )


@pytest.fixture
def storage() -> MemoryKeyValueStorage:
    """Return empty in-memory storage."""
    return MemoryKeyValueStorage()


@pytest.fixture
def plugin() -> FakeReminderPlugin:
    """Return a recording reminder plugin."""
    return FakeReminderPlugin()
