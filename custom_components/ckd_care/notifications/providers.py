"""Read-only collaborators consumed by the reminder engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date

from .models import NotificationSettings, ReminderPolicy, Schedule


class CachedScheduleProvider(ABC):
    """Already-loaded schedule state; every read is synchronous and local."""

    @abstractmethod
    def get_medication_schedules(self) -> list[Schedule]:
        """Return the pet's medication schedules."""

    @abstractmethod
    def get_fluid_schedule(self) -> Schedule | None:
        """Return the pet's fluid therapy schedule, if any."""

    @abstractmethod
    def get_logged_slots(self, day: date) -> set[tuple[str, str]]:
        """Return the (schedule_id, time_slot) pairs logged as done on day."""

    @abstractmethod
    def get_pet_name(self) -> str | None:
        """Return the display name used in notification text."""


class SettingsProvider(ABC):
    """Source of notification preferences and timing policy."""

    @abstractmethod
    def get_settings(self) -> NotificationSettings:
        """Return the current notification settings."""

    def get_policy(self) -> ReminderPolicy:
        """Return the timing policy."""
        return ReminderPolicy()
