"""Trigger wiring for CKD Care reminder reconciliation.

The coordinator decides *when* the reminder engine runs: once Home
Assistant has started, shortly after local midnight, hourly as a safety
net, whenever an unlogged slot crosses its grace window, and after every
schedule change made through the services.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EVENT_HOMEASSISTANT_STARTED
from homeassistant.core import CALLBACK_TYPE, Event, HomeAssistant, callback
from homeassistant.helpers.dispatcher import async_dispatcher_send
from homeassistant.helpers.event import (
    async_track_point_in_time,
    async_track_time_change,
    async_track_time_interval,
)

from .const import (
    GRACE_TIMER_SLACK_SECONDS,
    RECONCILE_INTERVAL_MINUTES,
    ROLLOVER_SECOND,
    SIGNAL_RECONCILED,
)
from .context.schedule_cache import ScheduleCache
from .notifications.engine import ReminderEngine
from .notifications.exceptions import StorageIOError
from .notifications.models import ReconcileResult
from .notifications.plugin import HomeAssistantReminderPlugin

_LOGGER = logging.getLogger(__name__)


class CkdCareCoordinator:
    """Run the reminder engine for one config entry."""

    def __init__(
        self,
        hass: HomeAssistant,
        entry: ConfigEntry,
        engine: ReminderEngine,
        cache: ScheduleCache,
        plugin: HomeAssistantReminderPlugin,
    ) -> None:
        """Initialize the coordinator."""
        self.hass = hass
        self.entry = entry
        self.engine = engine
        self.cache = cache
        self.plugin = plugin
        self.last_summaries: dict[str, str] = {}
        self._unsubs: list[CALLBACK_TYPE] = []
        self._grace_unsub: CALLBACK_TYPE | None = None

    @property
    def signal(self) -> str:
        """Return the dispatcher signal sent after each pass."""
        return f"{SIGNAL_RECONCILED}_{self.entry.entry_id}"

    async def async_start(self) -> None:
        """Register triggers and run the first pass once HA is up."""
        self._unsubs.append(
            async_track_time_change(
                self.hass, self._handle_midnight, hour=0, minute=0, second=ROLLOVER_SECOND
            )
        )
        self._unsubs.append(
            async_track_time_interval(
                self.hass,
                self._handle_interval,
                timedelta(minutes=RECONCILE_INTERVAL_MINUTES),
            )
        )

        if self.hass.is_running:
            self.hass.async_create_task(self.async_reconcile("startup"))
        else:
            listener_called = False

            async def _on_started(_event: Event) -> None:
                nonlocal listener_called
                listener_called = True
                await self.async_reconcile("startup")

            unsub = self.hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STARTED, _on_started)

            @callback
            def _safe_unsub() -> None:
                if not listener_called:
                    unsub()

            self._unsubs.append(_safe_unsub)

        _LOGGER.info(
            "CKD Care reminders started for %s/%s", self.engine.user_id, self.engine.pet_id
        )

    async def async_stop(self) -> None:
        """Cancel every trigger and timer."""
        for unsub in self._unsubs:
            unsub()
        self._unsubs.clear()
        self._cancel_grace_timer()
        await self.plugin.async_shutdown()
        await self.cache.async_save()

    async def async_reconcile(self, reason: str) -> ReconcileResult | None:
        """Run one reconciliation pass plus summaries.

        Storage failures end the pass without persisting; the next trigger
        retries.
        """
        _LOGGER.debug("Reconciling reminders (%s)", reason)
        result: ReconcileResult | None = None
        try:
            result = await self.engine.async_reconcile()
            self.last_summaries = await self.engine.async_reconcile_summaries()
        except StorageIOError as err:
            _LOGGER.warning("Reminder reconciliation (%s) aborted: %s", reason, err)
        finally:
            self._arm_grace_timer()

        async_dispatcher_send(self.hass, self.signal)
        return result

    async def async_schedules_changed(self, reason: str) -> ReconcileResult | None:
        """Persist the cache, mark today stale and reconcile."""
        await self.cache.async_save()
        self.engine.mark_stale()
        return await self.async_reconcile(reason)

    async def _handle_midnight(self, now: datetime) -> None:
        _LOGGER.debug("Day rollover at %s", now.isoformat())
        self.cache.prune_logged(now.date())
        await self.cache.async_save()
        try:
            await self.engine.async_rollover(now.date())
        except StorageIOError as err:
            _LOGGER.warning("Day rollover reconciliation aborted: %s", err)
        finally:
            self._arm_grace_timer()
        async_dispatcher_send(self.hass, self.signal)

    async def _handle_interval(self, _now: datetime) -> None:
        await self.async_reconcile("interval")

    def _arm_grace_timer(self) -> None:
        self._cancel_grace_timer()
        boundary = self.engine.next_grace_boundary()
        if boundary is None:
            return

        async def _on_grace_boundary(_now: datetime) -> None:
            self._grace_unsub = None
            self.engine.mark_stale()
            await self.async_reconcile("grace_boundary")

        self._grace_unsub = async_track_point_in_time(
            self.hass,
            _on_grace_boundary,
            boundary + timedelta(seconds=GRACE_TIMER_SLACK_SECONDS),
        )
        _LOGGER.debug("Next grace boundary check at %s", boundary.isoformat())

    def _cancel_grace_timer(self) -> None:
        if self._grace_unsub is not None:
            self._grace_unsub()
            self._grace_unsub = None

    def diagnostics(self) -> dict[str, Any]:
        """Return non-medical state for sensors and diagnostics."""
        result = self.engine.last_result
        return {
            "last_reconciled": self.engine.last_reconciled.isoformat()
            if self.engine.last_reconciled
            else None,
            "indexed_today": self.engine.last_index_size,
            "last_result": result.as_dict() if result else None,
            "summaries": dict(self.last_summaries),
        }
