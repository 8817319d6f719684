"""Sensor platform for CKD Care reminder state."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers import device_registry as dr
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DATA_COORDINATORS, DOMAIN
from .coordinator import CkdCareCoordinator

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up CKD Care sensors for a config entry."""
    coordinator: CkdCareCoordinator = hass.data[DOMAIN][DATA_COORDINATORS][entry.entry_id]
    async_add_entities(
        [
            RemindersTodaySensor(coordinator),
            LastReconciledSensor(coordinator),
        ]
    )


class CkdCareSensorBase(SensorEntity):
    """Base class for CKD Care sensors."""

    _attr_has_entity_name = True
    _attr_should_poll = False  # We use signals instead of polling

    def __init__(self, coordinator: CkdCareCoordinator, key: str) -> None:
        """Initialize the sensor."""
        self._coordinator = coordinator
        entry = coordinator.entry
        self._attr_unique_id = f"{entry.entry_id}_{key}"
        self._attr_translation_key = key
        self._attr_device_info = dr.DeviceInfo(
            identifiers={(DOMAIN, entry.entry_id)},
            name=entry.title,
            manufacturer="CKD Care",
            model="Treatment reminders",
            entry_type=dr.DeviceEntryType.SERVICE,
        )

    async def async_added_to_hass(self) -> None:
        """Register signal listener when added to hass."""
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass,
                self._coordinator.signal,
                self._handle_reconciled,
            )
        )

    @callback
    def _handle_reconciled(self) -> None:
        """Handle reconciliation signal."""
        self.async_write_ha_state()


class RemindersTodaySensor(CkdCareSensorBase):
    """Number of reminders indexed for today."""

    _attr_name = "Reminders today"
    _attr_icon = "mdi:bell-ring-outline"
    _attr_state_class = SensorStateClass.MEASUREMENT

    def __init__(self, coordinator: CkdCareCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator, "reminders_today")

    @property
    def native_value(self) -> int:
        """Return the indexed reminder count."""
        return self._coordinator.engine.last_index_size

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return counters of the last pass."""
        result = self._coordinator.engine.last_result
        attributes: dict[str, Any] = dict(self._coordinator.last_summaries)
        if result is not None:
            attributes.update(result.as_dict())
        return attributes


class LastReconciledSensor(CkdCareSensorBase):
    """Time of the last successful reconciliation."""

    _attr_name = "Last reconciled"
    _attr_icon = "mdi:calendar-sync"
    _attr_device_class = SensorDeviceClass.TIMESTAMP

    def __init__(self, coordinator: CkdCareCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator, "last_reconciled")

    @property
    def native_value(self) -> datetime | None:
        """Return when reminders were last reconciled."""
        return self._coordinator.engine.last_reconciled
