"""Diagnostics support for CKD Care."""

from __future__ import annotations

from typing import Any

from homeassistant.components.diagnostics import async_redact_data
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import (
    CONF_PET_ID,
    CONF_PET_NAME,
    CONF_USER_ID,
    DATA_COORDINATORS,
    DATA_ERROR_HANDLER,
    DOMAIN,
)

TO_REDACT = {CONF_USER_ID, CONF_PET_ID, CONF_PET_NAME}


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return reminder state without identifiers or medical details."""
    data = hass.data[DOMAIN]
    coordinator = data[DATA_COORDINATORS][entry.entry_id]
    error_handler = data[DATA_ERROR_HANDLER]

    return {
        "entry": async_redact_data({**entry.data, **entry.options}, TO_REDACT),
        "reminders": coordinator.diagnostics(),
        "pending_notifications": len(await coordinator.plugin.async_get_pending()),
        "errors": {
            "counts": dict(error_handler.counts),
            "last": async_redact_data(error_handler.last_error or {}, TO_REDACT),
        },
    }
