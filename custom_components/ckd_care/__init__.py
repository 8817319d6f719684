"""CKD Care - treatment reminders for cats with chronic kidney disease.

Each config entry is one pet. Its treatment schedules are cached locally and
turned into deterministic, restart-safe reminders that are reconciled against
the notification platform whenever something changes.
"""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers.storage import Store

from .const import (
    CONF_DEBUG_LOGGING,
    CONF_NOTIFY_SERVICE,
    CONF_PET_ID,
    CONF_PET_NAME,
    CONF_USER_ID,
    DATA_COORDINATORS,
    DATA_ERROR_HANDLER,
    DATA_INDEX_STORAGE,
    DATA_SCOPE_LOCKS,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_NOTIFY_SERVICE,
    DOMAIN,
    PENDING_NOTIFICATIONS_STORAGE_KEY,
    PENDING_NOTIFICATIONS_STORAGE_VERSION,
    SCHEDULE_CACHE_STORAGE_KEY,
    SCHEDULE_CACHE_STORAGE_VERSION,
)
from .context import ConfigEntrySettingsProvider, ScheduleCache
from .coordinator import CkdCareCoordinator
from .notifications import (
    HomeAssistantKeyValueStorage,
    HomeAssistantReminderPlugin,
    NotificationErrorHandler,
    NotificationIndexStore,
    ReminderEngine,
    ScopeLockRegistry,
)
from .services import async_register_services, async_unregister_services
from .utils import apply_debug_logging, get_config_value

_LOGGER = logging.getLogger(__name__)

# Schema indicating this integration is only configurable via config entries
CONFIG_SCHEMA = cv.config_entry_only_config_schema(DOMAIN)

PLATFORMS: list[Platform] = [Platform.SENSOR]


def _domain_data(hass: HomeAssistant) -> dict[str, Any]:
    """Return shared state, creating the objects every entry shares."""
    data = hass.data.setdefault(DOMAIN, {})
    data.setdefault(DATA_COORDINATORS, {})
    if DATA_INDEX_STORAGE not in data:
        data[DATA_INDEX_STORAGE] = HomeAssistantKeyValueStorage(hass)
    if DATA_SCOPE_LOCKS not in data:
        data[DATA_SCOPE_LOCKS] = ScopeLockRegistry()
    if DATA_ERROR_HANDLER not in data:
        data[DATA_ERROR_HANDLER] = NotificationErrorHandler(hass)
    return data


async def async_setup(hass: HomeAssistant, config: dict[str, Any]) -> bool:
    """Set up the CKD Care component."""
    _domain_data(hass)
    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up reminders for one pet from a config entry."""
    _LOGGER.info("Setting up CKD Care for %s", entry.title)
    data = _domain_data(hass)

    apply_debug_logging(get_config_value(entry, CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING))

    user_id = str(get_config_value(entry, CONF_USER_ID))
    pet_id = str(get_config_value(entry, CONF_PET_ID))

    cache = ScheduleCache(hass, entry.entry_id, get_config_value(entry, CONF_PET_NAME))
    await cache.async_load()

    plugin = HomeAssistantReminderPlugin(
        hass,
        get_config_value(entry, CONF_NOTIFY_SERVICE, DEFAULT_NOTIFY_SERVICE),
        storage_key=f"{PENDING_NOTIFICATIONS_STORAGE_KEY}.{entry.entry_id}",
    )
    await plugin.async_load()

    error_handler: NotificationErrorHandler = data[DATA_ERROR_HANDLER]
    engine = ReminderEngine(
        user_id,
        pet_id,
        NotificationIndexStore(data[DATA_INDEX_STORAGE], error_handler),
        plugin,
        cache,
        ConfigEntrySettingsProvider(entry),
        error_handler=error_handler,
        locks=data[DATA_SCOPE_LOCKS],
    )

    coordinator = CkdCareCoordinator(hass, entry, engine, cache, plugin)
    data[DATA_COORDINATORS][entry.entry_id] = coordinator

    async_register_services(hass)
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    # Register update listener for options
    entry.async_on_unload(entry.add_update_listener(async_update_options))

    await coordinator.async_start()

    _LOGGER.info("CKD Care setup complete for %s", entry.title)
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    _LOGGER.info("Unloading CKD Care for %s", entry.title)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if not unload_ok:
        return False

    coordinators: dict[str, CkdCareCoordinator] = hass.data[DOMAIN][DATA_COORDINATORS]
    coordinator = coordinators.pop(entry.entry_id, None)
    if coordinator is not None:
        await coordinator.async_stop()

    if not coordinators:
        async_unregister_services(hass)

    return True


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Forget a removed pet's reminder indexes, schedules and pending table."""
    data = _domain_data(hass)
    index_store = NotificationIndexStore(data[DATA_INDEX_STORAGE])
    cleared = await index_store.async_clear_scope(
        str(get_config_value(entry, CONF_USER_ID)),
        str(get_config_value(entry, CONF_PET_ID)),
    )
    _LOGGER.debug("Removed %d stored reminder indexes for %s", len(cleared), entry.title)

    for version, key in (
        (SCHEDULE_CACHE_STORAGE_VERSION, f"{SCHEDULE_CACHE_STORAGE_KEY}.{entry.entry_id}"),
        (
            PENDING_NOTIFICATIONS_STORAGE_VERSION,
            f"{PENDING_NOTIFICATIONS_STORAGE_KEY}.{entry.entry_id}",
        ),
    ):
        try:
            await Store(hass, version, key).async_remove()
        except OSError as err:
            _LOGGER.warning("Error removing storage %s: %s", key, err)


async def async_update_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Handle options update."""
    _LOGGER.debug("CKD Care options updated, reloading")
    await hass.config_entries.async_reload(entry.entry_id)
