"""Config flow for CKD Care integration."""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.core import callback
from homeassistant.helpers.selector import (
    BooleanSelector,
    NumberSelector,
    NumberSelectorConfig,
    NumberSelectorMode,
    TextSelector,
    TextSelectorConfig,
    TextSelectorType,
)

from .config_validators import (
    validate_followup_offset,
    validate_grace_period,
    validate_identifier,
    validate_service_string,
    validate_snooze_minutes,
)
from .const import (
    CONF_DEBUG_LOGGING,
    CONF_ENABLE_NOTIFICATIONS,
    CONF_END_OF_DAY_ENABLED,
    CONF_END_OF_DAY_TIME,
    CONF_FOLLOWUP_ENABLED,
    CONF_FOLLOWUP_OFFSET_HOURS,
    CONF_GRACE_PERIOD_MINUTES,
    CONF_NOTIFY_SERVICE,
    CONF_PET_ID,
    CONF_PET_NAME,
    CONF_SNOOZE_ENABLED,
    CONF_SNOOZE_MINUTES,
    CONF_USER_ID,
    CONF_WEEKLY_SUMMARY_ENABLED,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_ENABLE_NOTIFICATIONS,
    DEFAULT_END_OF_DAY_ENABLED,
    DEFAULT_END_OF_DAY_TIME,
    DEFAULT_FOLLOWUP_ENABLED,
    DEFAULT_FOLLOWUP_OFFSET_HOURS,
    DEFAULT_GRACE_PERIOD_MINUTES,
    DEFAULT_NOTIFY_SERVICE,
    DEFAULT_SNOOZE_ENABLED,
    DEFAULT_SNOOZE_MINUTES,
    DEFAULT_WEEKLY_SUMMARY_ENABLED,
    DOMAIN,
    FOLLOWUP_OFFSET_HOURS_MAX,
    FOLLOWUP_OFFSET_HOURS_MIN,
    GRACE_PERIOD_MINUTES_MAX,
    GRACE_PERIOD_MINUTES_MIN,
    SNOOZE_MINUTES_MAX,
    SNOOZE_MINUTES_MIN,
)
from .notifications.time_validation import is_valid_time_string
from .utils import apply_debug_logging

_LOGGER = logging.getLogger(__name__)

# Keys that belong to the config entry data, never to options
ENTRY_DATA_KEYS = (CONF_USER_ID, CONF_PET_ID)


def _validate_pet_input(user_input: dict[str, Any]) -> dict[str, str]:
    """Validate the pet step, returning form errors keyed by field."""
    errors: dict[str, str] = {}
    if not validate_identifier(user_input.get(CONF_USER_ID, "")):
        errors[CONF_USER_ID] = "invalid_identifier"
    if not validate_identifier(user_input.get(CONF_PET_ID, "")):
        errors[CONF_PET_ID] = "invalid_identifier"
    if not validate_service_string(user_input.get(CONF_NOTIFY_SERVICE, "")):
        errors[CONF_NOTIFY_SERVICE] = "invalid_notify_service"
    return errors


def _validate_reminder_input(user_input: dict[str, Any]) -> dict[str, str]:
    """Validate the reminder options step."""
    errors: dict[str, str] = {}
    if not is_valid_time_string(user_input.get(CONF_END_OF_DAY_TIME)):
        errors[CONF_END_OF_DAY_TIME] = "invalid_time"
    if not validate_grace_period(user_input.get(CONF_GRACE_PERIOD_MINUTES, 0)):
        errors[CONF_GRACE_PERIOD_MINUTES] = "out_of_range"
    if not validate_followup_offset(user_input.get(CONF_FOLLOWUP_OFFSET_HOURS, 0)):
        errors[CONF_FOLLOWUP_OFFSET_HOURS] = "out_of_range"
    if not validate_snooze_minutes(user_input.get(CONF_SNOOZE_MINUTES, 0)):
        errors[CONF_SNOOZE_MINUTES] = "out_of_range"
    return errors


def _number_selector(minimum: int, maximum: int, unit: str) -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=minimum,
            max=maximum,
            step=1,
            unit_of_measurement=unit,
            mode=NumberSelectorMode.BOX,
        )
    )


class CkdCareConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for CKD Care."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> OptionsFlow:
        """Get the options flow for this handler."""
        return CkdCareOptionsFlow(config_entry)

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the pet step."""
        errors: dict[str, str] = {}

        if user_input is not None:
            user_input = {
                **user_input,
                CONF_NOTIFY_SERVICE: str(user_input.get(CONF_NOTIFY_SERVICE, "")).strip(),
            }
            errors = _validate_pet_input(user_input)
            if not errors:
                await self.async_set_unique_id(
                    f"{user_input[CONF_USER_ID]}|{user_input[CONF_PET_ID]}"
                )
                self._abort_if_unique_id_configured()

                pet_name = str(user_input.get(CONF_PET_NAME) or "").strip()
                _LOGGER.info("Creating CKD Care entry for pet %s", user_input[CONF_PET_ID])
                return self.async_create_entry(
                    title=pet_name or user_input[CONF_PET_ID],
                    data={
                        CONF_USER_ID: user_input[CONF_USER_ID],
                        CONF_PET_ID: user_input[CONF_PET_ID],
                        CONF_PET_NAME: pet_name,
                        CONF_NOTIFY_SERVICE: user_input[CONF_NOTIFY_SERVICE],
                    },
                )

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_USER_ID): TextSelector(),
                    vol.Required(CONF_PET_ID): TextSelector(),
                    vol.Optional(CONF_PET_NAME, default=""): TextSelector(),
                    vol.Required(
                        CONF_NOTIFY_SERVICE, default=DEFAULT_NOTIFY_SERVICE
                    ): TextSelector(TextSelectorConfig(type=TextSelectorType.TEXT)),
                }
            ),
            errors=errors,
        )


class CkdCareOptionsFlow(OptionsFlow):
    """Handle CKD Care options.

    Two steps: which notifications are sent, then how reminders are timed.
    """

    def __init__(self, config_entry: ConfigEntry) -> None:
        """Initialize options flow."""
        super().__init__()
        # Merge data and options - options take precedence
        self._options_data = {**config_entry.data, **config_entry.options}

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Step 1: Notification toggles and delivery."""
        errors: dict[str, str] = {}
        current = self._options_data

        if user_input is not None:
            pet_name = str(user_input.get(CONF_PET_NAME) or "").strip()
            service = str(user_input.get(CONF_NOTIFY_SERVICE, "")).strip()
            if not validate_service_string(service):
                errors[CONF_NOTIFY_SERVICE] = "invalid_notify_service"
            else:
                self._options_data.update(
                    {**user_input, CONF_PET_NAME: pet_name, CONF_NOTIFY_SERVICE: service}
                )
                return await self.async_step_reminders()

        return self.async_show_form(
            step_id="init",
            data_schema=vol.Schema(
                {
                    vol.Optional(
                        CONF_PET_NAME, default=current.get(CONF_PET_NAME) or ""
                    ): TextSelector(),
                    vol.Required(
                        CONF_NOTIFY_SERVICE,
                        default=current.get(CONF_NOTIFY_SERVICE, DEFAULT_NOTIFY_SERVICE),
                    ): TextSelector(TextSelectorConfig(type=TextSelectorType.TEXT)),
                    vol.Required(
                        CONF_ENABLE_NOTIFICATIONS,
                        default=current.get(
                            CONF_ENABLE_NOTIFICATIONS, DEFAULT_ENABLE_NOTIFICATIONS
                        ),
                    ): BooleanSelector(),
                    vol.Required(
                        CONF_FOLLOWUP_ENABLED,
                        default=current.get(CONF_FOLLOWUP_ENABLED, DEFAULT_FOLLOWUP_ENABLED),
                    ): BooleanSelector(),
                    vol.Required(
                        CONF_SNOOZE_ENABLED,
                        default=current.get(CONF_SNOOZE_ENABLED, DEFAULT_SNOOZE_ENABLED),
                    ): BooleanSelector(),
                    vol.Required(
                        CONF_WEEKLY_SUMMARY_ENABLED,
                        default=current.get(
                            CONF_WEEKLY_SUMMARY_ENABLED, DEFAULT_WEEKLY_SUMMARY_ENABLED
                        ),
                    ): BooleanSelector(),
                    vol.Required(
                        CONF_END_OF_DAY_ENABLED,
                        default=current.get(CONF_END_OF_DAY_ENABLED, DEFAULT_END_OF_DAY_ENABLED),
                    ): BooleanSelector(),
                }
            ),
            errors=errors,
        )

    async def async_step_reminders(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Step 2: Reminder timing and debugging."""
        errors: dict[str, str] = {}
        current = self._options_data

        if user_input is not None:
            user_input = {
                **user_input,
                CONF_END_OF_DAY_TIME: str(user_input.get(CONF_END_OF_DAY_TIME, "")).strip(),
                CONF_GRACE_PERIOD_MINUTES: int(user_input[CONF_GRACE_PERIOD_MINUTES]),
                CONF_FOLLOWUP_OFFSET_HOURS: int(user_input[CONF_FOLLOWUP_OFFSET_HOURS]),
                CONF_SNOOZE_MINUTES: int(user_input[CONF_SNOOZE_MINUTES]),
            }
            errors = _validate_reminder_input(user_input)
            if not errors:
                self._options_data.update(user_input)
                # Ids are fixed for the life of the entry
                options_to_save = {
                    k: v for k, v in self._options_data.items() if k not in ENTRY_DATA_KEYS
                }

                # Apply debug logging setting immediately
                apply_debug_logging(
                    options_to_save.get(CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING)
                )
                return self.async_create_entry(title="", data=options_to_save)

        return self.async_show_form(
            step_id="reminders",
            data_schema=vol.Schema(
                {
                    vol.Required(
                        CONF_END_OF_DAY_TIME,
                        default=current.get(CONF_END_OF_DAY_TIME, DEFAULT_END_OF_DAY_TIME),
                    ): TextSelector(),
                    vol.Required(
                        CONF_GRACE_PERIOD_MINUTES,
                        default=current.get(
                            CONF_GRACE_PERIOD_MINUTES, DEFAULT_GRACE_PERIOD_MINUTES
                        ),
                    ): _number_selector(
                        GRACE_PERIOD_MINUTES_MIN, GRACE_PERIOD_MINUTES_MAX, "min"
                    ),
                    vol.Required(
                        CONF_FOLLOWUP_OFFSET_HOURS,
                        default=current.get(
                            CONF_FOLLOWUP_OFFSET_HOURS, DEFAULT_FOLLOWUP_OFFSET_HOURS
                        ),
                    ): _number_selector(
                        FOLLOWUP_OFFSET_HOURS_MIN, FOLLOWUP_OFFSET_HOURS_MAX, "h"
                    ),
                    vol.Required(
                        CONF_SNOOZE_MINUTES,
                        default=current.get(CONF_SNOOZE_MINUTES, DEFAULT_SNOOZE_MINUTES),
                    ): _number_selector(SNOOZE_MINUTES_MIN, SNOOZE_MINUTES_MAX, "min"),
                    vol.Required(
                        CONF_DEBUG_LOGGING,
                        default=current.get(CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING),
                    ): BooleanSelector(),
                }
            ),
            errors=errors,
        )
