"""Notification platform adapter.

The reminder engine only talks to the abstract ReminderPlugin. The Home
Assistant implementation plays the role of an OS notification scheduler: it
keeps a persistent table of pending notifications, arms a timer for each and
delivers through a notify service (or a persistent notification) when the
timer fires.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from homeassistant.core import CALLBACK_TYPE, HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.event import async_track_point_in_time
from homeassistant.helpers.storage import Store
from homeassistant.util import dt as dt_util

from ..const import (
    DEFAULT_NOTIFY_SERVICE,
    DOMAIN,
    PENDING_NOTIFICATIONS_STORAGE_KEY,
    PENDING_NOTIFICATIONS_STORAGE_VERSION,
)
from .exceptions import PlatformSchedulingError
from .models import NotificationContent, PendingNotification

_LOGGER = logging.getLogger(__name__)

# Pending notifications overdue by more than this at startup are dropped
STALE_PENDING_AFTER = timedelta(hours=24)

PERSISTENT_NOTIFICATION_SERVICE = "persistent_notification.create"


class ReminderPlugin(ABC):
    """Schedule, cancel and list platform notifications by numeric id."""

    @abstractmethod
    async def async_schedule(
        self,
        notification_id: int,
        fire_at: datetime,
        content: NotificationContent,
    ) -> None:
        """Schedule (or replace) a notification.

        A fire time that is not in the future is delivered right away.

        Raises:
            PlatformSchedulingError: if the platform refuses the request.
        """

    @abstractmethod
    async def async_cancel(self, notification_id: int) -> None:
        """Cancel a pending notification. Unknown ids are ignored."""

    @abstractmethod
    async def async_get_pending(self) -> list[PendingNotification]:
        """Return every notification still waiting to fire."""

    async def async_get_pending_ids(self) -> list[int]:
        """Return the ids of every pending notification."""
        return [pending.notification_id for pending in await self.async_get_pending()]


def split_service(service_name: str) -> tuple[str, str, bool]:
    """Split "domain.service" into its parts."""
    domain, _, service = str(service_name or "").strip().partition(".")
    valid = bool(domain) and bool(service) and "." not in service
    return domain, service, valid


def _empty_store_data() -> dict[str, Any]:
    """Return empty pending table structure."""
    return {"pending": {}}


class HomeAssistantReminderPlugin(ReminderPlugin):
    """Reminder plugin backed by Home Assistant timers and notify services."""

    def __init__(
        self,
        hass: HomeAssistant,
        notify_service: str = DEFAULT_NOTIFY_SERVICE,
        storage_key: str = PENDING_NOTIFICATIONS_STORAGE_KEY,
    ) -> None:
        """Initialize the plugin for one notify target."""
        self._hass = hass
        self._notify_service = notify_service or DEFAULT_NOTIFY_SERVICE
        self._store: Store = Store(hass, PENDING_NOTIFICATIONS_STORAGE_VERSION, storage_key)
        self._data: dict[str, Any] = _empty_store_data()
        self._timers: dict[int, CALLBACK_TYPE] = {}

    @property
    def _pending(self) -> dict[str, dict[str, Any]]:
        return self._data["pending"]

    async def async_load(self) -> None:
        """Load the pending table and re-arm timers."""
        stored = await self._store.async_load()
        if not isinstance(stored, dict) or not isinstance(stored.get("pending"), dict):
            self._data = _empty_store_data()
            _LOGGER.info("No pending notification storage found, starting fresh")
            return

        self._data = stored
        now = dt_util.now()
        overdue: list[int] = []
        dropped = 0
        for key, record in list(self._pending.items()):
            fire_at = dt_util.parse_datetime(str(record.get("fire_at") or ""))
            try:
                notification_id = int(key)
            except ValueError:
                fire_at = None
            if fire_at is None:
                self._pending.pop(key, None)
                dropped += 1
                continue
            if fire_at <= now - STALE_PENDING_AFTER:
                self._pending.pop(key, None)
                dropped += 1
            elif fire_at <= now:
                overdue.append(notification_id)
            else:
                self._arm_timer(notification_id, fire_at)

        if dropped:
            await self._async_save_pending()

        _LOGGER.info(
            "Loaded %d pending notifications (%d overdue, %d dropped)",
            len(self._pending),
            len(overdue),
            dropped,
        )
        for notification_id in overdue:
            await self._async_fire(notification_id)

    async def async_shutdown(self) -> None:
        """Cancel every timer; the pending table stays persisted."""
        for unsub in self._timers.values():
            unsub()
        self._timers.clear()

    async def async_schedule(
        self,
        notification_id: int,
        fire_at: datetime,
        content: NotificationContent,
    ) -> None:
        """Schedule (or replace) a notification."""
        self._ensure_service_available(notification_id)

        if fire_at <= dt_util.now():
            await self.async_cancel(notification_id)
            await self._async_deliver(notification_id, content, raise_on_error=True)
            return

        key = str(notification_id)
        previous = self._pending.get(key)
        self._pending[key] = {
            "fire_at": dt_util.as_utc(fire_at).isoformat(),
            "title": content.title,
            "body": content.body,
            "channel": content.channel,
            "payload": content.payload,
        }
        try:
            await self._async_save_pending()
        except PlatformSchedulingError:
            if previous is None:
                self._pending.pop(key, None)
            else:
                self._pending[key] = previous
            raise

        self._arm_timer(notification_id, fire_at)
        _LOGGER.debug("Scheduled notification %s for %s", notification_id, fire_at.isoformat())

    async def async_cancel(self, notification_id: int) -> None:
        """Cancel a pending notification."""
        unsub = self._timers.pop(notification_id, None)
        if unsub is not None:
            unsub()
        if self._pending.pop(str(notification_id), None) is None:
            return
        await self._async_save_pending()
        _LOGGER.debug("Cancelled notification %s", notification_id)

    async def async_get_pending(self) -> list[PendingNotification]:
        """Return every notification still waiting to fire."""
        pending: list[PendingNotification] = []
        for key, record in self._pending.items():
            try:
                notification_id = int(key)
            except ValueError:
                continue
            fire_at = dt_util.parse_datetime(str(record.get("fire_at") or ""))
            pending.append(
                PendingNotification(
                    notification_id=notification_id,
                    fire_at=dt_util.as_local(fire_at) if fire_at else None,
                    payload=record.get("payload"),
                )
            )
        return pending

    def _ensure_service_available(self, notification_id: int) -> None:
        domain, service, valid = split_service(self._notify_service)
        if not valid:
            raise PlatformSchedulingError(notification_id, "invalid_notify_service")
        if (
            self._notify_service != PERSISTENT_NOTIFICATION_SERVICE
            and not self._hass.services.has_service(domain, service)
        ):
            raise PlatformSchedulingError(notification_id, "notify_service_unavailable")

    async def _async_save_pending(self) -> None:
        try:
            await self._store.async_save(self._data)
        except (HomeAssistantError, OSError) as err:
            raise PlatformSchedulingError(None, f"pending_table_write_failed: {err}") from err

    def _arm_timer(self, notification_id: int, fire_at: datetime) -> None:
        existing = self._timers.pop(notification_id, None)
        if existing is not None:
            existing()

        @callback
        def _handle_fire(_now: datetime) -> None:
            self._timers.pop(notification_id, None)
            self._hass.async_create_task(self._async_fire(notification_id))

        self._timers[notification_id] = async_track_point_in_time(
            self._hass, _handle_fire, fire_at
        )

    async def _async_fire(self, notification_id: int) -> None:
        """Deliver a pending notification whose time has come."""
        record = self._pending.pop(str(notification_id), None)
        if record is None:
            return
        try:
            await self._async_save_pending()
        except PlatformSchedulingError as err:
            _LOGGER.warning("Could not update pending notifications after firing: %s", err)

        content = NotificationContent(
            title=str(record.get("title") or ""),
            body=str(record.get("body") or ""),
            channel=str(record.get("channel") or ""),
            payload=record.get("payload"),
        )
        await self._async_deliver(notification_id, content, raise_on_error=False)

    async def _async_deliver(
        self,
        notification_id: int,
        content: NotificationContent,
        *,
        raise_on_error: bool,
    ) -> None:
        """Send content through the configured service."""
        try:
            if self._notify_service == PERSISTENT_NOTIFICATION_SERVICE:
                from homeassistant.components.persistent_notification import async_create

                async_create(
                    self._hass,
                    content.body,
                    title=content.title,
                    notification_id=f"{DOMAIN}_{notification_id}",
                )
            else:
                domain, service, _ = split_service(self._notify_service)
                await self._hass.services.async_call(
                    domain,
                    service,
                    {
                        "title": content.title,
                        "message": content.body,
                        "data": {
                            "tag": f"{DOMAIN}_{notification_id}",
                            "channel": content.channel,
                            "payload": content.payload,
                        },
                    },
                    blocking=True,
                )
        except HomeAssistantError as err:
            if raise_on_error:
                raise PlatformSchedulingError(notification_id, str(err)) from err
            _LOGGER.warning("Delivering notification %s failed: %s", notification_id, err)
            return

        _LOGGER.debug("Delivered notification %s on channel %s", notification_id, content.channel)
