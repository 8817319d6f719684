"""Local key-value storage backing the notification index."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.storage import Store

from ..const import (
    NOTIFICATION_INDEX_STORAGE_KEY,
    NOTIFICATION_INDEX_STORAGE_VERSION,
)
from .exceptions import StorageIOError

_LOGGER = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """String key-value storage with whole-value writes."""

    @abstractmethod
    async def async_get_string(self, key: str) -> str | None:
        """Return the value stored under key, or None."""

    @abstractmethod
    async def async_set_string(self, key: str, value: str) -> None:
        """Store value under key as a single write."""

    @abstractmethod
    async def async_remove(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    async def async_keys(self) -> list[str]:
        """Return every stored key."""


def _empty_store_data() -> dict[str, Any]:
    """Return empty key-value storage structure."""
    return {"values": {}}


class HomeAssistantKeyValueStorage(KeyValueStorage):
    """Key-value storage persisted through Home Assistant's Store helper.

    All keys live in one JSON document. Store writes to a temporary file and
    renames it, so readers never observe a half-written value.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        storage_key: str = NOTIFICATION_INDEX_STORAGE_KEY,
    ) -> None:
        """Initialize storage for the given Store key."""
        self._store: Store = Store(hass, NOTIFICATION_INDEX_STORAGE_VERSION, storage_key)
        self._data: dict[str, Any] | None = None
        self._load_lock = asyncio.Lock()

    async def _async_values(self) -> dict[str, str]:
        """Return the in-memory mapping, loading it on first use."""
        if self._data is None:
            async with self._load_lock:
                if self._data is None:
                    try:
                        stored = await self._store.async_load()
                    except (HomeAssistantError, OSError) as err:
                        raise StorageIOError(f"Failed to read {self._store.key}: {err}") from err

                    data = stored if isinstance(stored, dict) else _empty_store_data()
                    if not isinstance(data.get("values"), dict):
                        data = _empty_store_data()
                    self._data = data
                    _LOGGER.debug(
                        "Loaded %d notification index keys", len(self._data["values"])
                    )
        return self._data["values"]

    async def _async_write(self) -> None:
        try:
            await self._store.async_save(self._data)
        except (HomeAssistantError, OSError) as err:
            raise StorageIOError(f"Failed to write {self._store.key}: {err}") from err

    async def async_get_string(self, key: str) -> str | None:
        """Return the value stored under key, or None."""
        value = (await self._async_values()).get(key)
        return value if isinstance(value, str) else None

    async def async_set_string(self, key: str, value: str) -> None:
        """Store value under key and persist the document."""
        values = await self._async_values()
        previous = values.get(key)
        values[key] = value
        try:
            await self._async_write()
        except StorageIOError:
            # Keep memory consistent with what is on disk
            if previous is None:
                values.pop(key, None)
            else:
                values[key] = previous
            raise

    async def async_remove(self, key: str) -> None:
        """Remove key if present and persist the document."""
        values = await self._async_values()
        if key not in values:
            return
        previous = values.pop(key)
        try:
            await self._async_write()
        except StorageIOError:
            values[key] = previous
            raise

    async def async_keys(self) -> list[str]:
        """Return every stored key."""
        return list(await self._async_values())
