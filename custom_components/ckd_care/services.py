"""Service handlers for CKD Care."""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError
from homeassistant.helpers import config_validation as cv
from homeassistant.util import dt as dt_util

from .config_validators import identifier, time_string
from .const import (
    ATTR_CREATED_AT,
    ATTR_DATE,
    ATTR_ENTRY_ID,
    ATTR_FREQUENCY,
    ATTR_IS_ACTIVE,
    ATTR_KIND,
    ATTR_NAME,
    ATTR_REMINDER_TIMES,
    ATTR_SCHEDULE_ID,
    ATTR_TIME_SLOT,
    ATTR_TREATMENT_TYPE,
    DATA_COORDINATORS,
    DOMAIN,
    KIND_FOLLOWUP,
    KIND_INITIAL,
    SERVICE_CLEAR_INDEX,
    SERVICE_DELETE_SCHEDULE,
    SERVICE_LOG_TREATMENT,
    SERVICE_RECONCILE,
    SERVICE_SNOOZE,
    SERVICE_UPSERT_SCHEDULE,
)
from .coordinator import CkdCareCoordinator
from .notifications.exceptions import PlatformSchedulingError, StorageIOError, ValidationError
from .notifications.models import Schedule, ScheduleFrequency, TreatmentType

_LOGGER = logging.getLogger(__name__)

SERVICE_ENTRY_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_ENTRY_ID): cv.string,
    }
)

SERVICE_SNOOZE_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_ENTRY_ID): cv.string,
        vol.Required(ATTR_SCHEDULE_ID): identifier,
        vol.Required(ATTR_TIME_SLOT): time_string,
        vol.Optional(ATTR_KIND, default=KIND_INITIAL): vol.In([KIND_INITIAL, KIND_FOLLOWUP]),
    }
)

SERVICE_LOG_TREATMENT_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_ENTRY_ID): cv.string,
        vol.Required(ATTR_SCHEDULE_ID): identifier,
        vol.Required(ATTR_TIME_SLOT): time_string,
        vol.Optional(ATTR_DATE): cv.date,
    }
)

SERVICE_UPSERT_SCHEDULE_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_ENTRY_ID): cv.string,
        vol.Required(ATTR_SCHEDULE_ID): identifier,
        vol.Required(ATTR_TREATMENT_TYPE): vol.In([t.value for t in TreatmentType]),
        vol.Required(ATTR_FREQUENCY): vol.In([f.value for f in ScheduleFrequency]),
        vol.Required(ATTR_REMINDER_TIMES): vol.All(
            cv.ensure_list, vol.Length(min=1), [time_string]
        ),
        vol.Optional(ATTR_IS_ACTIVE, default=True): cv.boolean,
        vol.Optional(ATTR_CREATED_AT): cv.date,
        vol.Optional(ATTR_NAME, default=""): cv.string,
    }
)

SERVICE_DELETE_SCHEDULE_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_ENTRY_ID): cv.string,
        vol.Required(ATTR_SCHEDULE_ID): identifier,
    }
)


def _coordinators(hass: HomeAssistant) -> dict[str, CkdCareCoordinator]:
    return hass.data.get(DOMAIN, {}).get(DATA_COORDINATORS, {})


def _targets(hass: HomeAssistant, call: ServiceCall) -> list[CkdCareCoordinator]:
    """Return the coordinators a service call applies to."""
    coordinators = _coordinators(hass)
    entry_id = call.data.get(ATTR_ENTRY_ID)
    if entry_id:
        coordinator = coordinators.get(entry_id)
        if coordinator is None:
            raise ServiceValidationError(f"Unknown CKD Care entry: {entry_id}")
        return [coordinator]
    if not coordinators:
        raise ServiceValidationError("No CKD Care entry is set up")
    return list(coordinators.values())


def _single_target(hass: HomeAssistant, call: ServiceCall) -> CkdCareCoordinator:
    """Return the one coordinator a pet-specific call applies to."""
    targets = _targets(hass, call)
    if len(targets) > 1:
        raise ServiceValidationError(
            f"Several pets are configured, {ATTR_ENTRY_ID} is required"
        )
    return targets[0]


async def _handle_reconcile(hass: HomeAssistant, call: ServiceCall) -> None:
    for coordinator in _targets(hass, call):
        coordinator.engine.mark_stale()
        await coordinator.async_reconcile("service")


async def _handle_snooze(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _single_target(hass, call)
    try:
        snoozed = await coordinator.engine.async_snooze(
            call.data[ATTR_SCHEDULE_ID],
            call.data[ATTR_TIME_SLOT],
            call.data[ATTR_KIND],
        )
    except ValidationError as err:
        raise ServiceValidationError(str(err)) from err
    except (PlatformSchedulingError, StorageIOError) as err:
        raise HomeAssistantError(f"Snooze failed: {err}") from err

    if snoozed is None:
        raise ServiceValidationError("Snooze is disabled in the notification settings")


async def _handle_log_treatment(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _single_target(hass, call)
    day = call.data.get(ATTR_DATE) or dt_util.now().date()
    try:
        coordinator.cache.log_treatment(call.data[ATTR_SCHEDULE_ID], call.data[ATTR_TIME_SLOT], day)
    except ValidationError as err:
        raise ServiceValidationError(str(err)) from err
    await coordinator.async_schedules_changed("log_treatment")


async def _handle_upsert_schedule(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _single_target(hass, call)
    existing = coordinator.cache.get_schedule(call.data[ATTR_SCHEDULE_ID])
    created_at = call.data.get(ATTR_CREATED_AT)
    if created_at is None:
        created_at = existing.created_at if existing and existing.created_at else dt_util.now().date()

    data: dict[str, Any] = {
        "id": call.data[ATTR_SCHEDULE_ID],
        "treatment_type": call.data[ATTR_TREATMENT_TYPE],
        "frequency": call.data[ATTR_FREQUENCY],
        "reminder_times": call.data[ATTR_REMINDER_TIMES],
        "is_active": call.data[ATTR_IS_ACTIVE],
        "created_at": created_at,
        "name": call.data[ATTR_NAME],
    }
    try:
        schedule = Schedule.from_dict(data)
    except ValidationError as err:
        raise ServiceValidationError(str(err)) from err

    removed = coordinator.cache.upsert_schedule(schedule)
    if removed:
        _LOGGER.info("Replaced fluid schedule(s) %s with %s", removed, schedule.id)
    await coordinator.async_schedules_changed("upsert_schedule")


async def _handle_delete_schedule(hass: HomeAssistant, call: ServiceCall) -> None:
    coordinator = _single_target(hass, call)
    if not coordinator.cache.delete_schedule(call.data[ATTR_SCHEDULE_ID]):
        raise ServiceValidationError(f"Unknown schedule: {call.data[ATTR_SCHEDULE_ID]}")
    await coordinator.async_schedules_changed("delete_schedule")


async def _handle_clear_index(hass: HomeAssistant, call: ServiceCall) -> None:
    for coordinator in _targets(hass, call):
        try:
            await coordinator.engine.async_clear_scope()
        except StorageIOError as err:
            raise HomeAssistantError(f"Clearing reminders failed: {err}") from err


def async_register_services(hass: HomeAssistant) -> None:
    """Register CKD Care services once per Home Assistant instance."""
    if hass.services.has_service(DOMAIN, SERVICE_RECONCILE):
        return

    handlers = (
        (SERVICE_RECONCILE, _handle_reconcile, SERVICE_ENTRY_SCHEMA),
        (SERVICE_SNOOZE, _handle_snooze, SERVICE_SNOOZE_SCHEMA),
        (SERVICE_LOG_TREATMENT, _handle_log_treatment, SERVICE_LOG_TREATMENT_SCHEMA),
        (SERVICE_UPSERT_SCHEDULE, _handle_upsert_schedule, SERVICE_UPSERT_SCHEDULE_SCHEMA),
        (SERVICE_DELETE_SCHEDULE, _handle_delete_schedule, SERVICE_DELETE_SCHEDULE_SCHEMA),
        (SERVICE_CLEAR_INDEX, _handle_clear_index, SERVICE_ENTRY_SCHEMA),
    )
    for service, handler, schema in handlers:

        async def _service(call: ServiceCall, handler=handler) -> None:
            await handler(hass, call)

        hass.services.async_register(DOMAIN, service, _service, schema=schema)

    _LOGGER.debug("Registered %d CKD Care services", len(handlers))


def async_unregister_services(hass: HomeAssistant) -> None:
    """Remove CKD Care services when the last entry unloads."""
    for service in (
        SERVICE_RECONCILE,
        SERVICE_SNOOZE,
        SERVICE_LOG_TREATMENT,
        SERVICE_UPSERT_SCHEDULE,
        SERVICE_DELETE_SCHEDULE,
        SERVICE_CLEAR_INDEX,
    ):
        hass.services.async_remove(DOMAIN, service)
