"""Notification settings read from the config entry."""

from __future__ import annotations

from typing import Any

from homeassistant.config_entries import ConfigEntry

from ..notifications.models import NotificationSettings, ReminderPolicy
from ..notifications.providers import SettingsProvider


class ConfigEntrySettingsProvider(SettingsProvider):
    """Expose a config entry's options as settings and policy.

    Options override data, so values chosen in the options flow win over
    those captured during setup.
    """

    def __init__(self, entry: ConfigEntry) -> None:
        """Initialize with the config entry to read from."""
        self._entry = entry

    def _merged(self) -> dict[str, Any]:
        return {**self._entry.data, **self._entry.options}

    def get_settings(self) -> NotificationSettings:
        """Return the current notification settings."""
        return NotificationSettings.from_options(self._merged())

    def get_policy(self) -> ReminderPolicy:
        """Return the configured timing policy."""
        return ReminderPolicy.from_options(self._merged())
