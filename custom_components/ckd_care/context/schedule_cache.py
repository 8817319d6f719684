"""Cached treatment schedules and logged treatments for one pet.

The reminder engine reads schedules synchronously through the
CachedScheduleProvider interface; this manager keeps them in memory and
persists them with Home Assistant's Storage API.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from ..const import (
    DEFAULT_PET_NAME,
    SCHEDULE_CACHE_STORAGE_KEY,
    SCHEDULE_CACHE_STORAGE_VERSION,
)
from ..notifications.exceptions import ValidationError
from ..notifications.models import Schedule, TreatmentType
from ..notifications.providers import CachedScheduleProvider
from ..notifications.time_validation import parse_time_string

_LOGGER = logging.getLogger(__name__)

# Logged treatments older than this are dropped at day rollover
LOGGED_RETENTION_DAYS = 7


def _empty_store_data() -> dict[str, Any]:
    """Create empty store data structure."""
    return {
        "version": SCHEDULE_CACHE_STORAGE_VERSION,
        "schedules": [],
        "logged": {},
    }


class ScheduleCache(CachedScheduleProvider):
    """Keep one pet's schedules and logged slots in memory and on disk."""

    def __init__(
        self,
        hass: HomeAssistant | None,
        entry_id: str,
        pet_name: str | None = None,
    ) -> None:
        """Initialize the cache for a config entry."""
        self._store: Store | None = None
        if hass is not None:
            self._store = Store(
                hass,
                SCHEDULE_CACHE_STORAGE_VERSION,
                f"{SCHEDULE_CACHE_STORAGE_KEY}.{entry_id}",
            )
        self._pet_name = pet_name
        self._schedules: dict[str, Schedule] = {}
        self._logged: dict[str, set[tuple[str, str]]] = {}

    async def async_load(self) -> None:
        """Load schedules from HA storage."""
        if self._store is None:
            return

        stored = await self._store.async_load()
        if stored is None:
            _LOGGER.info("No schedule storage found, starting fresh")
            return

        self.import_state(stored)
        _LOGGER.info(
            "Loaded %d schedules for %s", len(self._schedules), self.get_pet_name()
        )

    def import_state(self, stored: Any) -> None:
        """Replace in-memory state with stored data, skipping invalid rows."""
        data = stored if isinstance(stored, dict) else _empty_store_data()

        self._schedules = {}
        raw_schedules = data.get("schedules")
        for raw in raw_schedules if isinstance(raw_schedules, list) else []:
            if not isinstance(raw, dict):
                continue
            try:
                schedule = Schedule.from_dict(raw)
            except ValidationError as err:
                _LOGGER.warning("Skipping invalid stored schedule: %s", err)
                continue
            self._schedules[schedule.id] = schedule

        self._logged = {}
        raw_logged = data.get("logged")
        for day, slots in (raw_logged if isinstance(raw_logged, dict) else {}).items():
            if not isinstance(slots, list):
                continue
            self._logged[str(day)] = {
                (str(slot[0]), str(slot[1]))
                for slot in slots
                if isinstance(slot, (list, tuple)) and len(slot) == 2
            }

    def export_state(self) -> dict[str, Any]:
        """Return the stored representation."""
        return {
            "version": SCHEDULE_CACHE_STORAGE_VERSION,
            "schedules": [schedule.to_dict() for schedule in self._schedules.values()],
            "logged": {
                day: sorted([list(slot) for slot in slots])
                for day, slots in sorted(self._logged.items())
            },
        }

    async def async_save(self) -> None:
        """Persist schedules immediately."""
        if self._store is None:
            return

        try:
            await self._store.async_save(self.export_state())
        except Exception as err:
            _LOGGER.error("Failed to save schedules: %s", err)

    # CachedScheduleProvider

    def get_medication_schedules(self) -> list[Schedule]:
        """Return medication schedules in insertion order."""
        return [
            schedule
            for schedule in self._schedules.values()
            if schedule.treatment_type is TreatmentType.MEDICATION
        ]

    def get_fluid_schedule(self) -> Schedule | None:
        """Return the fluid therapy schedule, if any."""
        for schedule in self._schedules.values():
            if schedule.treatment_type is TreatmentType.FLUID:
                return schedule
        return None

    def get_logged_slots(self, day: date) -> set[tuple[str, str]]:
        """Return the slots logged as done on day."""
        return set(self._logged.get(day.isoformat(), set()))

    def get_pet_name(self) -> str | None:
        """Return the pet's display name."""
        return self._pet_name or DEFAULT_PET_NAME

    # Mutations

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        """Return a schedule by id."""
        return self._schedules.get(schedule_id)

    def upsert_schedule(self, schedule: Schedule) -> list[str]:
        """Add or replace a schedule.

        A pet has at most one fluid schedule, so adding a fluid schedule under
        a new id replaces the old one. Returns the ids that were removed.
        """
        removed: list[str] = []
        if schedule.treatment_type is TreatmentType.FLUID:
            for existing in list(self._schedules.values()):
                if existing.treatment_type is TreatmentType.FLUID and existing.id != schedule.id:
                    del self._schedules[existing.id]
                    removed.append(existing.id)
        self._schedules[schedule.id] = schedule
        _LOGGER.debug("Upserted schedule %s (%s)", schedule.id, schedule.frequency.value)
        return removed

    def delete_schedule(self, schedule_id: str) -> bool:
        """Remove a schedule. Returns False if it was unknown."""
        if self._schedules.pop(schedule_id, None) is None:
            return False
        for slots in self._logged.values():
            slots.difference_update({slot for slot in slots if slot[0] == schedule_id})
        _LOGGER.debug("Deleted schedule %s", schedule_id)
        return True

    def log_treatment(self, schedule_id: str, time_slot: str, day: date) -> None:
        """Record that a slot's treatment was given on day.

        Raises:
            ValidationError: if the schedule is unknown or the slot is invalid.
        """
        parse_time_string(time_slot)
        if schedule_id not in self._schedules:
            raise ValidationError("schedule_id", schedule_id, "a known schedule")
        self._logged.setdefault(day.isoformat(), set()).add((schedule_id, time_slot))
        _LOGGER.debug("Logged treatment %s/%s on %s", schedule_id, time_slot, day.isoformat())

    def prune_logged(self, today: date) -> int:
        """Drop logged treatments past the retention window."""
        cutoff = today - timedelta(days=LOGGED_RETENTION_DAYS)
        stale = []
        for day in self._logged:
            try:
                if date.fromisoformat(day) < cutoff:
                    stale.append(day)
            except ValueError:
                stale.append(day)
        for day in stale:
            del self._logged[day]
        return len(stale)
