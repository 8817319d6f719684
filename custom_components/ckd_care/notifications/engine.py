"""Reminder scheduling engine.

The engine computes which reminders a pet should have for a day, diffs that
target against the persisted index and applies the minimal set of cancel and
schedule calls to the notification platform. Only the state that was
actually achieved on the platform is written back, so a later pass retries
whatever failed.

Passes for the same (user, pet, day) never overlap: each one holds the
scope's lock from index load to index save.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

from homeassistant.util import dt as dt_util

from ..const import SUMMARY_END_OF_DAY, SUMMARY_WEEKLY
from .content import (
    build_reminder_payload,
    build_summary_payload,
    reminder_content,
    summary_content,
)
from .error_handler import NotificationErrorHandler
from .exceptions import PlatformSchedulingError, StorageIOError, ValidationError
from .index_store import NotificationIndexStore
from .models import (
    NotificationIndex,
    NotificationKind,
    NotificationSettings,
    PendingNotification,
    ReconcileResult,
    ReminderPolicy,
    Schedule,
    ScheduledNotificationEntry,
    sorted_entries,
)
from .notification_id import generate_notification_id, generate_summary_notification_id
from .plugin import ReminderPlugin
from .providers import CachedScheduleProvider, SettingsProvider
from .scheduling import (
    SchedulingDecision,
    calculate_followup_time,
    calculate_priority,
    evaluate_grace_period,
    grace_deadline,
    next_weekly_summary_time,
    zoned_datetime_for_day,
)
from .time_validation import parse_time_string

_LOGGER = logging.getLogger(__name__)

# Weekly summary ids are derived from the week; disabling cancels this many weeks
WEEKLY_SUMMARY_LOOKAHEAD_WEEKS = 4

SUMMARY_SCHEDULED = "scheduled"
SUMMARY_ALREADY_SCHEDULED = "already_scheduled"
SUMMARY_CANCELLED = "cancelled"
SUMMARY_SKIPPED = "skipped"
SUMMARY_FAILED = "failed"


class ScopeState(str, Enum):
    """Reconciliation state of one (user, pet, day) scope."""

    UNINITIALIZED = "uninitialized"
    RECONCILED = "reconciled"
    STALE = "stale"
    CORRUPT = "corrupt"
    REBUILDING = "rebuilding"


@dataclass(frozen=True)
class SnoozeResult:
    """A snooze that was scheduled."""

    entry: ScheduledNotificationEntry
    fire_at: datetime


class ScopeLockRegistry:
    """In-process locks keyed by user, pet and day."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def scope_key(user_id: str, pet_id: str, day: date) -> str:
        """Return the lock key of a scope."""
        return f"{user_id}|{pet_id}|{day.isoformat()}"

    def get(self, user_id: str, pet_id: str, day: date) -> asyncio.Lock:
        """Return the lock guarding a scope, creating it on first use."""
        key = self.scope_key(user_id, pet_id, day)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def prune(self, before: date) -> None:
        """Forget idle locks of days before the given date."""
        for key in list(self._locks):
            lock = self._locks[key]
            try:
                lock_day = date.fromisoformat(key.rsplit("|", 1)[1])
            except ValueError:
                continue
            if lock_day < before and not lock.locked():
                del self._locks[key]


# Target entries mapped to their fire time
TargetPlan = dict[ScheduledNotificationEntry, datetime]


class ReminderEngine:
    """Reconcile one pet's reminders with the notification platform."""

    def __init__(
        self,
        user_id: str,
        pet_id: str,
        index_store: NotificationIndexStore,
        plugin: ReminderPlugin,
        schedules: CachedScheduleProvider,
        settings: SettingsProvider,
        *,
        error_handler: NotificationErrorHandler | None = None,
        locks: ScopeLockRegistry | None = None,
        now: Callable[[], datetime] = dt_util.now,
    ) -> None:
        """Initialize the engine with its collaborators."""
        self.user_id = user_id
        self.pet_id = pet_id
        self._index_store = index_store
        self._plugin = plugin
        self._schedules = schedules
        self._settings = settings
        self._error_handler = error_handler
        self._locks = locks or ScopeLockRegistry()
        self._now = now
        self._states: dict[date, ScopeState] = {}
        self.last_result: ReconcileResult | None = None
        self.last_reconciled: datetime | None = None
        self.last_index_size: int = 0

    # ------------------------------------------------------------------
    # Scope state
    # ------------------------------------------------------------------

    def scope_state(self, day: date) -> ScopeState:
        """Return the reconciliation state of a day."""
        return self._states.get(day, ScopeState.UNINITIALIZED)

    def mark_stale(self, day: date | None = None) -> None:
        """Flag a day (default: today) as needing reconciliation."""
        day = day or self._now().date()
        self._set_state(day, ScopeState.STALE)

    def _set_state(self, day: date, state: ScopeState) -> None:
        previous = self._states.get(day, ScopeState.UNINITIALIZED)
        self._states[day] = state
        if previous != state:
            _LOGGER.debug(
                "Scope %s/%s %s: %s -> %s",
                self.user_id,
                self.pet_id,
                day.isoformat(),
                previous.value,
                state.value,
            )

    # ------------------------------------------------------------------
    # Target computation
    # ------------------------------------------------------------------

    def compute_target_entries(
        self,
        day: date,
        medication_schedules: Iterable[Schedule],
        fluid_schedule: Schedule | None,
        settings: NotificationSettings,
        *,
        now: datetime,
        logged_slots: Iterable[tuple[str, str]] = (),
        policy: ReminderPolicy | None = None,
    ) -> set[ScheduledNotificationEntry]:
        """Return the entries that should be scheduled for day.

        Pure: reads nothing but its arguments.
        """
        policy = policy or ReminderPolicy()
        plan = self._build_plan(
            day, medication_schedules, fluid_schedule, settings, policy, now, set(logged_slots)
        )
        return set(self._apply_limit(plan, now, policy))

    def _build_plan(
        self,
        day: date,
        medication_schedules: Iterable[Schedule],
        fluid_schedule: Schedule | None,
        settings: NotificationSettings,
        policy: ReminderPolicy,
        now: datetime,
        logged_slots: set[tuple[str, str]],
    ) -> TargetPlan:
        plan: TargetPlan = {}
        if not settings.enable_notifications:
            return plan

        schedules = list(medication_schedules)
        if fluid_schedule is not None:
            schedules.append(fluid_schedule)

        for schedule in schedules:
            if not schedule.is_active:
                continue
            for time_slot in schedule.reminder_times_on_date(day):
                if (schedule.id, time_slot) in logged_slots:
                    continue

                initial_at = zoned_datetime_for_day(day, time_slot, now.tzinfo)
                self._add_to_plan(
                    plan, self._make_entry(schedule, time_slot, NotificationKind.INITIAL), initial_at
                )

                if settings.followup_enabled and now >= grace_deadline(initial_at, policy):
                    self._add_to_plan(
                        plan,
                        self._make_entry(schedule, time_slot, NotificationKind.FOLLOWUP),
                        calculate_followup_time(initial_at, policy),
                    )
        return plan

    def _make_entry(
        self,
        schedule: Schedule,
        time_slot: str,
        kind: NotificationKind,
    ) -> ScheduledNotificationEntry:
        return ScheduledNotificationEntry(
            notification_id=generate_notification_id(
                self.user_id, self.pet_id, schedule.id, time_slot, kind.value
            ),
            schedule_id=schedule.id,
            treatment_type=schedule.treatment_type,
            time_slot=time_slot,
            kind=kind,
        )

    @staticmethod
    def _add_to_plan(
        plan: TargetPlan,
        entry: ScheduledNotificationEntry,
        fire_at: datetime,
    ) -> None:
        for existing in plan:
            if existing.notification_id == entry.notification_id:
                if existing != entry:
                    _LOGGER.warning(
                        "Notification id %s collides for schedules %s and %s, keeping the first",
                        entry.notification_id,
                        existing.schedule_id,
                        entry.schedule_id,
                    )
                return
        plan[entry] = fire_at

    def _apply_limit(self, plan: TargetPlan, now: datetime, policy: ReminderPolicy) -> TargetPlan:
        count = len(plan)
        if count >= policy.limit_warning_threshold:
            _LOGGER.warning(
                "Pet %s has %d of %d allowed reminders",
                self.pet_id,
                count,
                policy.max_notifications_per_pet,
            )
        if count <= policy.max_notifications_per_pet:
            return plan

        ranked = sorted(
            plan.items(),
            key=lambda item: (
                -calculate_priority(item[0], item[1], now),
                item[1],
                item[0].sort_key(),
            ),
        )
        kept = dict(ranked[: policy.max_notifications_per_pet])
        _LOGGER.warning(
            "Pet %s exceeds the reminder limit, skipped %d lower priority reminders",
            self.pet_id,
            count - len(kept),
        )
        return kept

    def next_grace_boundary(self, now: datetime | None = None) -> datetime | None:
        """Return when the next unlogged slot of today passes its grace window."""
        now = now or self._now()
        settings = self._settings.get_settings()
        if not settings.enable_notifications or not settings.followup_enabled:
            return None

        policy = self._settings.get_policy()
        day = now.date()
        logged = self._schedules.get_logged_slots(day)
        schedules = list(self._schedules.get_medication_schedules())
        fluid = self._schedules.get_fluid_schedule()
        if fluid is not None:
            schedules.append(fluid)

        upcoming: list[datetime] = []
        for schedule in schedules:
            if not schedule.is_active:
                continue
            for time_slot in schedule.reminder_times_on_date(day):
                if (schedule.id, time_slot) in logged:
                    continue
                deadline = grace_deadline(zoned_datetime_for_day(day, time_slot, now.tzinfo), policy)
                if deadline > now:
                    upcoming.append(deadline)
        return min(upcoming, default=None)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def async_reconcile(self, day: date | None = None) -> ReconcileResult:
        """Bring the platform and the index for day (default: today) in line with the target.

        Raises:
            StorageIOError: if the index cannot be read or written. Nothing is
                persisted in that case.
        """
        day = day or self._now().date()
        async with self._locks.get(self.user_id, self.pet_id, day):
            return await self._async_reconcile_locked(day)

    async def _async_reconcile_locked(self, day: date) -> ReconcileResult:
        now = self._now()
        settings = self._settings.get_settings()
        policy = self._settings.get_policy()
        result = ReconcileResult()

        current = await self._async_load_index(day, "reconcile", result)

        plan = self._build_plan(
            day,
            self._schedules.get_medication_schedules(),
            self._schedules.get_fluid_schedule(),
            settings,
            policy,
            now,
            self._schedules.get_logged_slots(day),
        )

        # Snoozes live until their slot is logged or leaves the target
        target_slots = {entry.slot_key for entry in plan}
        for entry in current.entries:
            if entry.kind is NotificationKind.SNOOZE and entry.slot_key in target_slots:
                self._add_to_plan(plan, entry, now + timedelta(minutes=policy.snooze_minutes))

        plan = self._apply_limit(plan, now, policy)
        target = set(plan)

        to_cancel = current.entries - target
        to_schedule = target - current.entries
        kept = current.entries & target
        result.unchanged = len(kept)
        achieved: dict[int, ScheduledNotificationEntry] = {
            entry.notification_id: entry for entry in kept
        }

        for entry in sorted_entries(to_cancel):
            try:
                await self._plugin.async_cancel(entry.notification_id)
            except PlatformSchedulingError as err:
                # Still on the platform, keep it indexed so the next pass retries
                achieved[entry.notification_id] = entry
                self._record_failure(result, "cancel", err, day, entry)
                continue
            result.cancelled += 1

        pet_name = self._schedules.get_pet_name()
        for entry in sorted_entries(to_schedule):
            fire_at = plan[entry]
            decision = evaluate_grace_period(fire_at, now, policy.grace_period_minutes)
            if decision is SchedulingDecision.MISSED:
                _LOGGER.debug(
                    "Reminder %s at %s is past its grace window, not scheduling",
                    entry.notification_id,
                    fire_at.isoformat(),
                )
                result.missed += 1
                achieved[entry.notification_id] = entry
                continue

            content = reminder_content(
                entry, pet_name, build_reminder_payload(self.user_id, self.pet_id, day, entry)
            )
            try:
                await self._plugin.async_schedule(
                    entry.notification_id,
                    fire_at if decision is SchedulingDecision.SCHEDULED else now,
                    content,
                )
            except PlatformSchedulingError as err:
                self._record_failure(result, "schedule", err, day, entry)
                continue

            if decision is SchedulingDecision.IMMEDIATE:
                result.immediate += 1
            else:
                result.scheduled += 1
            achieved[entry.notification_id] = entry

        try:
            saved = await self._index_store.async_save(
                self.user_id, self.pet_id, day, achieved.values()
            )
        except StorageIOError as err:
            self._report("reconcile_save", err, day=day)
            self._set_state(day, ScopeState.STALE)
            raise

        self._set_state(day, ScopeState.RECONCILED)
        self.last_result = result
        self.last_reconciled = now
        if day == now.date():
            self.last_index_size = len(saved)

        _LOGGER.info(
            "Reconciled %s/%s on %s: %d scheduled, %d immediate, %d missed, "
            "%d cancelled, %d failed, %d unchanged%s",
            self.user_id,
            self.pet_id,
            day.isoformat(),
            result.scheduled,
            result.immediate,
            result.missed,
            result.cancelled,
            result.failed,
            result.unchanged,
            " (rebuilt)" if result.rebuilt else "",
        )
        return result

    async def _async_load_index(
        self,
        day: date,
        operation: str,
        result: ReconcileResult | None = None,
    ) -> NotificationIndex:
        """Load a scope's index, rebuilding it from the platform if corrupt."""
        try:
            current = await self._index_store.async_load(self.user_id, self.pet_id, day)
        except StorageIOError as err:
            self._report(f"{operation}_load", err, day=day)
            self._set_state(day, ScopeState.STALE)
            raise

        if not current.corrupt:
            return current

        self._set_state(day, ScopeState.CORRUPT)
        self._set_state(day, ScopeState.REBUILDING)
        try:
            pending = await self._plugin.async_get_pending()
        except PlatformSchedulingError as err:
            self._report(f"{operation}_rebuild", err, day=day)
            pending = []

        if result is not None:
            result.rebuilt = True
        return self._index_store.rebuild_from_platform_state(
            self.user_id, self.pet_id, day, pending
        )

    def _record_failure(
        self,
        result: ReconcileResult,
        operation: str,
        err: PlatformSchedulingError,
        day: date,
        entry: ScheduledNotificationEntry,
    ) -> None:
        result.failed += 1
        result.errors.append(f"{operation} {entry.notification_id}: {err.reason}")
        self._report(
            operation,
            err,
            day=day,
            schedule_id=entry.schedule_id,
            notification_id=entry.notification_id,
        )

    def _report(self, operation: str, error: BaseException | str, **scope) -> None:
        if self._error_handler is not None:
            self._error_handler.report(
                operation, error, user_id=self.user_id, pet_id=self.pet_id, **scope
            )
        else:
            _LOGGER.warning(
                "Notification %s failed for %s/%s: %s", operation, self.user_id, self.pet_id, error
            )

    # ------------------------------------------------------------------
    # Snooze
    # ------------------------------------------------------------------

    async def async_snooze(
        self,
        schedule_id: str,
        time_slot: str,
        kind: str | NotificationKind,
        *,
        day: date | None = None,
    ) -> SnoozeResult | None:
        """Add one snooze reminder for a slot without recomputing the day.

        Returns None when snoozing is disabled in the settings.

        Raises:
            ValidationError: for an unknown schedule, a bad slot, or a snooze
                of a snooze.
            PlatformSchedulingError: if the snooze could not be scheduled.
            StorageIOError: if the index cannot be read or written.
        """
        parse_time_string(time_slot)
        source_kind = NotificationKind.parse(kind)
        if source_kind is NotificationKind.SNOOZE:
            raise ValidationError("kind", source_kind.value, "initial or followup")

        settings = self._settings.get_settings()
        if not settings.enable_notifications or not settings.snooze_enabled:
            _LOGGER.info("Snooze ignored for %s/%s: disabled in settings", self.user_id, self.pet_id)
            return None

        schedule = self._find_schedule(schedule_id)
        if schedule is None:
            raise ValidationError("schedule_id", schedule_id, "a known schedule")

        policy = self._settings.get_policy()
        day = day or self._now().date()
        async with self._locks.get(self.user_id, self.pet_id, day):
            now = self._now()
            current = await self._async_load_index(day, "snooze")
            entry = self._make_entry(schedule, time_slot, NotificationKind.SNOOZE)
            fire_at = now + timedelta(minutes=policy.snooze_minutes)
            content = reminder_content(
                entry,
                self._schedules.get_pet_name(),
                build_reminder_payload(self.user_id, self.pet_id, day, entry),
            )

            try:
                await self._plugin.async_schedule(entry.notification_id, fire_at, content)
            except PlatformSchedulingError as err:
                self._report("snooze", err, day=day, schedule_id=schedule_id)
                raise

            entries = [e for e in current.entries if e.notification_id != entry.notification_id]
            entries.append(entry)
            try:
                saved = await self._index_store.async_save(self.user_id, self.pet_id, day, entries)
            except StorageIOError as err:
                self._report("snooze_save", err, day=day, schedule_id=schedule_id)
                raise
            if day == now.date():
                self.last_index_size = len(saved)

        _LOGGER.info(
            "Snoozed %s reminder %s/%s until %s",
            source_kind.value,
            schedule_id,
            time_slot,
            fire_at.isoformat(),
        )
        return SnoozeResult(entry=entry, fire_at=fire_at)

    def _find_schedule(self, schedule_id: str) -> Schedule | None:
        for schedule in self._schedules.get_medication_schedules():
            if schedule.id == schedule_id:
                return schedule
        fluid = self._schedules.get_fluid_schedule()
        if fluid is not None and fluid.id == schedule_id:
            return fluid
        return None

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def async_reconcile_summaries(self) -> dict[str, str]:
        """Schedule or cancel the weekly and end-of-day summaries."""
        now = self._now()
        settings = self._settings.get_settings()
        policy = self._settings.get_policy()
        pending = {p.notification_id: p for p in await self._async_pending_or_empty()}
        pet_name = self._schedules.get_pet_name()
        outcome: dict[str, str] = {}

        weekly_ids = [
            generate_summary_notification_id(
                self.user_id,
                self.pet_id,
                SUMMARY_WEEKLY,
                (next_weekly_summary_time(now, policy) + timedelta(weeks=week)).date(),
            )
            for week in range(WEEKLY_SUMMARY_LOOKAHEAD_WEEKS)
        ]
        if settings.enable_notifications and settings.weekly_summary_enabled:
            fire_at = next_weekly_summary_time(now, policy)
            outcome[SUMMARY_WEEKLY] = await self._async_ensure_summary(
                SUMMARY_WEEKLY, weekly_ids[0], fire_at, pending, pet_name
            )
        else:
            outcome[SUMMARY_WEEKLY] = await self._async_cancel_summaries(
                SUMMARY_WEEKLY, weekly_ids, pending
            )

        today = now.date()
        end_of_day_ids = [
            generate_summary_notification_id(self.user_id, self.pet_id, SUMMARY_END_OF_DAY, day)
            for day in (today, today + timedelta(days=1))
        ]
        if settings.enable_notifications and settings.end_of_day_enabled:
            fire_at = zoned_datetime_for_day(today, settings.end_of_day_time, now.tzinfo)
            if fire_at > now:
                outcome[SUMMARY_END_OF_DAY] = await self._async_ensure_summary(
                    SUMMARY_END_OF_DAY, end_of_day_ids[0], fire_at, pending, pet_name
                )
            else:
                outcome[SUMMARY_END_OF_DAY] = SUMMARY_SKIPPED
        else:
            outcome[SUMMARY_END_OF_DAY] = await self._async_cancel_summaries(
                SUMMARY_END_OF_DAY, end_of_day_ids, pending
            )

        _LOGGER.debug("Summary notifications for %s/%s: %s", self.user_id, self.pet_id, outcome)
        return outcome

    async def _async_pending_or_empty(self) -> list[PendingNotification]:
        try:
            return await self._plugin.async_get_pending()
        except PlatformSchedulingError as err:
            self._report("summary_pending", err)
            return []

    async def _async_ensure_summary(
        self,
        summary_type: str,
        notification_id: int,
        fire_at: datetime,
        pending: dict[int, PendingNotification],
        pet_name: str | None,
    ) -> str:
        existing = pending.get(notification_id)
        if existing is not None and existing.fire_at == fire_at:
            return SUMMARY_ALREADY_SCHEDULED

        content = summary_content(
            summary_type,
            pet_name,
            build_summary_payload(self.user_id, self.pet_id, summary_type, fire_at.date()),
        )
        try:
            await self._plugin.async_schedule(notification_id, fire_at, content)
        except PlatformSchedulingError as err:
            self._report(f"schedule_{summary_type}", err, notification_id=notification_id)
            return SUMMARY_FAILED
        _LOGGER.debug("Scheduled %s summary for %s", summary_type, fire_at.isoformat())
        return SUMMARY_SCHEDULED

    async def _async_cancel_summaries(
        self,
        summary_type: str,
        notification_ids: list[int],
        pending: dict[int, PendingNotification],
    ) -> str:
        outcome = SUMMARY_SKIPPED
        for notification_id in notification_ids:
            if notification_id not in pending:
                continue
            try:
                await self._plugin.async_cancel(notification_id)
            except PlatformSchedulingError as err:
                self._report(f"cancel_{summary_type}", err, notification_id=notification_id)
                return SUMMARY_FAILED
            outcome = SUMMARY_CANCELLED
        return outcome

    # ------------------------------------------------------------------
    # Day rollover and reset
    # ------------------------------------------------------------------

    async def async_rollover(self, today: date | None = None) -> ReconcileResult:
        """Drop indexes of past days, then reconcile the new day."""
        today = today or self._now().date()
        for day in await self._index_store.async_list_days(self.user_id, self.pet_id):
            if day < today:
                await self._index_store.async_clear(self.user_id, self.pet_id, day)
                self._states.pop(day, None)
                _LOGGER.debug("Cleared notification index of %s", day.isoformat())
        for day in [d for d in self._states if d < today]:
            del self._states[day]
        self._locks.prune(today)

        self.mark_stale(today)
        result = await self.async_reconcile(today)
        await self.async_reconcile_summaries()
        return result

    async def async_clear_scope(self) -> int:
        """Cancel every reminder of this pet and delete all its stored indexes.

        Returns the number of notifications cancelled.
        """
        cancelled: set[int] = set()
        for day in await self._index_store.async_list_days(self.user_id, self.pet_id):
            async with self._locks.get(self.user_id, self.pet_id, day):
                index = await self._index_store.async_load(self.user_id, self.pet_id, day)
                for entry in index.entries:
                    if await self._async_cancel_quietly(entry.notification_id, day):
                        cancelled.add(entry.notification_id)

        # Catch platform notifications the index no longer knows about
        for notification in await self._async_pending_or_empty():
            payload = notification.decoded_payload() or {}
            if payload.get("userId") != self.user_id or payload.get("petId") != self.pet_id:
                continue
            if notification.notification_id in cancelled:
                continue
            if await self._async_cancel_quietly(notification.notification_id, None):
                cancelled.add(notification.notification_id)

        cleared = await self._index_store.async_clear_scope(self.user_id, self.pet_id)
        self._states.clear()
        self.last_index_size = 0
        _LOGGER.info(
            "Cleared reminders for %s/%s: %d cancelled, %d day indexes removed",
            self.user_id,
            self.pet_id,
            len(cancelled),
            len(cleared),
        )
        return len(cancelled)

    async def _async_cancel_quietly(self, notification_id: int, day: date | None) -> bool:
        try:
            await self._plugin.async_cancel(notification_id)
        except PlatformSchedulingError as err:
            self._report("clear_cancel", err, day=day, notification_id=notification_id)
            return False
        return True
