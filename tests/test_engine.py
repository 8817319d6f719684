"""Tests for the reminder reconciliation engine."""

from __future__ import annotations

import asyncio
import json
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from custom_components.ckd_care.notifications.engine import (
    ReminderEngine,
    ScopeLockRegistry,
    ScopeState,
)
from custom_components.ckd_care.notifications.error_handler import NotificationErrorHandler
from custom_components.ckd_care.notifications.exceptions import (
    PlatformSchedulingError,
    StorageIOError,
    ValidationError,
)
from custom_components.ckd_care.notifications.index_store import NotificationIndexStore
from custom_components.ckd_care.notifications.models import (
    NotificationKind,
    NotificationSettings,
    PendingNotification,
    ReminderPolicy,
)
from custom_components.ckd_care.notifications.notification_id import (
    generate_notification_id,
    generate_summary_notification_id,
)

from .conftest import (
    TEST_DAY,
    FakeReminderPlugin,
    MemoryKeyValueStorage,
    MutableClock,
    YieldingKeyValueStorage,
    StaticScheduleProvider,
    StaticSettingsProvider,
    at,
    fluid_schedule,
    medication_schedule,
)


def _id(schedule_id: str, slot: str, kind: str, pet_id: str = "p1") -> int:
    return generate_notification_id("u1", pet_id, schedule_id, slot, kind)


def _make_engine(
    storage: MemoryKeyValueStorage,
    plugin: FakeReminderPlugin,
    provider: StaticScheduleProvider,
    *,
    now=None,
    settings: NotificationSettings | None = None,
    policy: ReminderPolicy | None = None,
    pet_id: str = "p1",
    user_id: str = "u1",
    error_handler: NotificationErrorHandler | None = None,
    locks: ScopeLockRegistry | None = None,
) -> tuple[ReminderEngine, MutableClock, StaticSettingsProvider]:
    clock = MutableClock(now or at(6))
    settings_provider = StaticSettingsProvider(settings, policy)
    engine = ReminderEngine(
        user_id,
        pet_id,
        NotificationIndexStore(storage, error_handler),
        plugin,
        provider,
        settings_provider,
        error_handler=error_handler,
        locks=locks,
        now=clock,
    )
    return engine, clock, settings_provider


async def _stored_ids(storage: MemoryKeyValueStorage, pet_id: str = "p1", day: date = TEST_DAY) -> set[int]:
    index = await NotificationIndexStore(storage).async_load("u1", pet_id, day)
    return {entry.notification_id for entry in index.entries}


class TestComputeTargetEntries:
    """Test the pure target computation."""

    def _engine(self) -> ReminderEngine:
        engine, _, _ = _make_engine(
            MemoryKeyValueStorage(), FakeReminderPlugin(), StaticScheduleProvider()
        )
        return engine

    def test_grace_boundary_0829_vs_0831(self) -> None:
        """Test a follow-up appears only once the grace window has elapsed."""
        engine = self._engine()
        schedule = medication_schedule()

        before = engine.compute_target_entries(
            TEST_DAY, [schedule], None, NotificationSettings(), now=at(8, 29)
        )
        after = engine.compute_target_entries(
            TEST_DAY, [schedule], None, NotificationSettings(), now=at(8, 31)
        )

        assert {entry.kind for entry in before} == {NotificationKind.INITIAL}
        assert {entry.kind for entry in after} == {
            NotificationKind.INITIAL,
            NotificationKind.FOLLOWUP,
        }

    def test_logged_slot_produces_nothing(self) -> None:
        """Test a logged slot gets neither initial nor follow-up."""
        entries = self._engine().compute_target_entries(
            TEST_DAY,
            [medication_schedule(times=("08:00", "20:00"))],
            None,
            NotificationSettings(),
            now=at(9),
            logged_slots=[("med-a", "08:00")],
        )
        assert {entry.time_slot for entry in entries} == {"20:00"}

    def test_disabled_and_inactive(self) -> None:
        """Test disabled notifications and inactive schedules yield no entries."""
        engine = self._engine()
        assert not engine.compute_target_entries(
            TEST_DAY,
            [medication_schedule()],
            fluid_schedule(),
            NotificationSettings(enable_notifications=False),
            now=at(6),
        )
        assert not engine.compute_target_entries(
            TEST_DAY,
            [medication_schedule(is_active=False)],
            None,
            NotificationSettings(),
            now=at(6),
        )

    def test_followups_can_be_disabled(self) -> None:
        """Test follow-up setting gates follow-up entries."""
        entries = self._engine().compute_target_entries(
            TEST_DAY,
            [medication_schedule()],
            None,
            NotificationSettings(followup_enabled=False),
            now=at(12),
        )
        assert {entry.kind for entry in entries} == {NotificationKind.INITIAL}

    def test_includes_fluid_schedule(self) -> None:
        """Test the fluid schedule contributes fluid entries."""
        entries = self._engine().compute_target_entries(
            TEST_DAY, [medication_schedule()], fluid_schedule(), NotificationSettings(), now=at(6)
        )
        assert {entry.treatment_type.value for entry in entries} == {"medication", "fluid"}

    def test_limit_keeps_highest_priority(self) -> None:
        """Test entries beyond the per-pet limit are dropped by priority."""
        entries = self._engine().compute_target_entries(
            TEST_DAY,
            [medication_schedule(times=("07:00", "09:00", "21:00"))],
            None,
            NotificationSettings(),
            now=at(6),
            policy=ReminderPolicy(max_notifications_per_pet=2, limit_warning_threshold=2),
        )
        assert {entry.time_slot for entry in entries} == {"07:00", "09:00"}

    def test_id_collision_keeps_first(self) -> None:
        """Test a hash collision degrades to one entry instead of crashing."""
        with patch(
            "custom_components.ckd_care.notifications.engine.generate_notification_id",
            return_value=7,
        ):
            entries = self._engine().compute_target_entries(
                TEST_DAY,
                [medication_schedule("med-a"), medication_schedule("med-b", times=("09:00",))],
                None,
                NotificationSettings(),
                now=at(6),
            )
        assert len(entries) == 1
        assert next(iter(entries)).schedule_id == "med-a"


class TestReconcile:
    """Test full reconciliation passes."""

    @pytest.mark.asyncio
    async def test_idempotent(self, storage, plugin) -> None:
        """Test a second pass without changes makes no platform calls."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)

        first = await engine.async_reconcile()
        assert first.scheduled == 2
        plugin.reset_calls()

        second = await engine.async_reconcile()

        assert plugin.calls == 0
        assert second.platform_calls == 0
        assert second.unchanged == 2
        assert engine.scope_state(TEST_DAY) is ScopeState.RECONCILED
        assert engine.last_index_size == 2

    @pytest.mark.asyncio
    async def test_diff_schedules_only_new_slot(self, storage, plugin) -> None:
        """Test adding 20:00 issues one schedule and no cancels."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00",))])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        provider.medication = [medication_schedule(times=("08:00", "20:00"))]
        engine.mark_stale()
        await engine.async_reconcile()

        assert plugin.scheduled == [(_id("med-a", "20:00", "initial"), at(20))]
        assert plugin.cancelled == []

    @pytest.mark.asyncio
    async def test_changed_slot_cancels_old(self, storage, plugin) -> None:
        """Test moving a slot cancels the old id and schedules the new one."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00",))])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        provider.medication = [medication_schedule(times=("09:00",))]
        await engine.async_reconcile()

        assert plugin.cancelled == [_id("med-a", "08:00", "initial")]
        assert plugin.scheduled == [(_id("med-a", "09:00", "initial"), at(9))]
        assert await _stored_ids(storage) == {_id("med-a", "09:00", "initial")}

    @pytest.mark.asyncio
    async def test_followup_added_after_grace(self, storage, plugin) -> None:
        """Test the 08:31 pass schedules a follow-up for 10:00."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, clock, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        clock.now = at(8, 31)
        await engine.async_reconcile()

        assert plugin.scheduled == [(_id("med-a", "08:00", "followup"), at(10))]
        assert plugin.cancelled == []

    @pytest.mark.asyncio
    async def test_within_grace_fires_immediately(self, storage, plugin) -> None:
        """Test a first pass inside the grace window fires now."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider, now=at(8, 20))

        result = await engine.async_reconcile()

        assert result.immediate == 1
        assert plugin.scheduled == [(_id("med-a", "08:00", "initial"), at(8, 20))]

    @pytest.mark.asyncio
    async def test_missed_is_recorded_not_sent(self, storage, plugin) -> None:
        """Test a reminder past its grace window is persisted without a call."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider, now=at(9))

        result = await engine.async_reconcile()

        assert result.missed == 1
        assert result.scheduled == 1
        assert plugin.scheduled == [(_id("med-a", "08:00", "followup"), at(10))]
        assert await _stored_ids(storage) == {
            _id("med-a", "08:00", "initial"),
            _id("med-a", "08:00", "followup"),
        }

        plugin.reset_calls()
        await engine.async_reconcile()
        assert plugin.calls == 0

    @pytest.mark.asyncio
    async def test_logging_cancels_slot(self, storage, plugin) -> None:
        """Test a logged slot's reminders are cancelled on the next pass."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        provider.log("med-a", "08:00")
        await engine.async_reconcile()

        assert plugin.cancelled == [_id("med-a", "08:00", "initial")]
        assert plugin.scheduled == []

    @pytest.mark.asyncio
    async def test_disabling_cancels_everything(self, storage, plugin) -> None:
        """Test the master toggle removes every reminder."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, settings = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()

        settings.settings = NotificationSettings(enable_notifications=False)
        result = await engine.async_reconcile()

        assert result.cancelled == 2
        assert await _stored_ids(storage) == set()

    @pytest.mark.asyncio
    async def test_partial_schedule_failure(self, storage, plugin) -> None:
        """Test failed schedules are not persisted and are retried next pass."""
        error_handler = NotificationErrorHandler()
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider, error_handler=error_handler)
        failing = _id("med-a", "20:00", "initial")
        plugin.fail_schedule.add(failing)

        result = await engine.async_reconcile()

        assert result.scheduled == 1
        assert result.failed == 1
        assert result.errors == [f"schedule {failing}: permission_denied"]
        assert await _stored_ids(storage) == {_id("med-a", "08:00", "initial")}
        assert error_handler.counts["platform_scheduling"] == 1
        assert error_handler.last_error["notification_id"] == failing

        plugin.fail_schedule.clear()
        plugin.reset_calls()
        await engine.async_reconcile()

        assert plugin.scheduled == [(failing, at(20))]

    @pytest.mark.asyncio
    async def test_failed_cancel_stays_indexed(self, storage, plugin) -> None:
        """Test an entry the platform refused to cancel is kept for retry."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()

        old_id = _id("med-a", "08:00", "initial")
        plugin.fail_cancel.add(old_id)
        provider.medication = []
        result = await engine.async_reconcile()

        assert result.failed == 1
        assert await _stored_ids(storage) == {old_id}

        plugin.fail_cancel.clear()
        await engine.async_reconcile()
        assert await _stored_ids(storage) == set()

    @pytest.mark.asyncio
    async def test_storage_write_failure(self, storage, plugin) -> None:
        """Test a failed save aborts the pass and leaves the scope stale."""
        error_handler = NotificationErrorHandler()
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider, error_handler=error_handler)
        storage.fail_writes = True

        with pytest.raises(StorageIOError):
            await engine.async_reconcile()

        assert engine.scope_state(TEST_DAY) is ScopeState.STALE
        assert engine.last_result is None
        assert error_handler.last_error["operation"] == "reconcile_save"
        assert error_handler.counts["storage_io"] == 1

    @pytest.mark.asyncio
    async def test_storage_read_failure(self, storage, plugin) -> None:
        """Test a failed load aborts before any platform call."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider)
        storage.fail_reads = True

        with pytest.raises(StorageIOError):
            await engine.async_reconcile()
        assert plugin.calls == 0

    @pytest.mark.asyncio
    async def test_corruption_rebuilds_from_platform(self, storage, plugin) -> None:
        """Test a corrupt index is rebuilt instead of rescheduling everything."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        key = NotificationIndexStore(storage).build_key("u1", "p1", TEST_DAY)
        data = json.loads(storage.values[key])
        data["checksum"] = "deadbeef"
        storage.values[key] = json.dumps(data)

        result = await engine.async_reconcile()

        assert result.rebuilt is True
        assert plugin.calls == 0
        assert result.unchanged == 2
        assert engine.scope_state(TEST_DAY) is ScopeState.RECONCILED
        assert len(await _stored_ids(storage)) == 2

    @pytest.mark.asyncio
    async def test_corruption_with_unavailable_platform(self, storage, plugin) -> None:
        """Test rebuild falls back to an empty index when pending is unavailable."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider)
        key = NotificationIndexStore(storage).build_key("u1", "p1", TEST_DAY)
        storage.values[key] = "{broken"
        plugin.fail_pending = True

        result = await engine.async_reconcile()

        assert result.rebuilt is True
        assert result.scheduled == 1

    @pytest.mark.asyncio
    async def test_multi_pet_isolation(self, storage, plugin) -> None:
        """Test reconciling one pet leaves another pet's index untouched."""
        locks = ScopeLockRegistry()
        provider_a = StaticScheduleProvider([medication_schedule()])
        engine_a, _, _ = _make_engine(storage, plugin, provider_a, pet_id="petA", locks=locks)
        engine_b, _, _ = _make_engine(
            storage, plugin, StaticScheduleProvider([medication_schedule()]), pet_id="petB", locks=locks
        )
        await engine_b.async_reconcile()
        key_b = NotificationIndexStore(storage).build_key("u1", "petB", TEST_DAY)
        stored_b = storage.values[key_b]

        await engine_a.async_reconcile()
        provider_a.medication = []
        await engine_a.async_reconcile()

        assert storage.values[key_b] == stored_b
        assert _id("med-a", "08:00", "initial", "petA") != _id("med-a", "08:00", "initial", "petB")

    @pytest.mark.asyncio
    async def test_underscore_ids_do_not_share_an_index(self, storage, plugin) -> None:
        """Test user a / pet b_c and user a_b / pet c keep separate indexes."""
        locks = ScopeLockRegistry()
        engine_ab, _, _ = _make_engine(
            storage,
            plugin,
            StaticScheduleProvider([medication_schedule("med-a")]),
            user_id="a",
            pet_id="b_c",
            locks=locks,
        )
        engine_c, _, _ = _make_engine(
            storage,
            plugin,
            StaticScheduleProvider([medication_schedule("med-b")]),
            user_id="a_b",
            pet_id="c",
            locks=locks,
        )
        await engine_ab.async_reconcile()
        await engine_c.async_reconcile()
        plugin.reset_calls()

        result = await engine_ab.async_reconcile()

        index_store = NotificationIndexStore(storage)
        first = await index_store.async_load("a", "b_c", TEST_DAY)
        second = await index_store.async_load("a_b", "c", TEST_DAY)
        assert [entry.schedule_id for entry in first.entries] == ["med-a"]
        assert [entry.schedule_id for entry in second.entries] == ["med-b"]
        assert result.scheduled == 0
        assert result.cancelled == 0
        assert plugin.calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_passes_do_not_double_schedule(self, plugin) -> None:
        """Test overlapping passes for one scope run one after the other."""
        storage = YieldingKeyValueStorage()
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)

        await asyncio.gather(engine.async_reconcile(), engine.async_reconcile())

        assert len(plugin.scheduled) == 2
        assert len(await _stored_ids(storage)) == 2

    @pytest.mark.asyncio
    async def test_unshared_locks_interleave(self, plugin) -> None:
        """Test passes without a common lock registry do double-schedule."""
        storage = YieldingKeyValueStorage()
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        first, _, _ = _make_engine(storage, plugin, provider, locks=ScopeLockRegistry())
        second, _, _ = _make_engine(storage, plugin, provider, locks=ScopeLockRegistry())

        await asyncio.gather(first.async_reconcile(), second.async_reconcile())

        assert len(plugin.scheduled) == 4

    @pytest.mark.asyncio
    async def test_shared_locks_serialize_engines(self, plugin) -> None:
        """Test two engines for one scope sharing a registry schedule once."""
        storage = YieldingKeyValueStorage()
        locks = ScopeLockRegistry()
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        first, _, _ = _make_engine(storage, plugin, provider, locks=locks)
        second, _, _ = _make_engine(storage, plugin, provider, locks=locks)

        await asyncio.gather(first.async_reconcile(), second.async_reconcile())

        assert len(plugin.scheduled) == 2


class TestSnooze:
    """Test additive snoozes."""

    @pytest.mark.asyncio
    async def test_snooze_is_additive(self, storage, plugin) -> None:
        """Test a snooze adds exactly one entry at now + 15 minutes."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, clock, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.reset_calls()

        clock.now = at(8, 5)
        snoozed = await engine.async_snooze("med-a", "08:00", "initial")

        snooze_id = _id("med-a", "08:00", "snooze")
        assert snoozed.entry.kind is NotificationKind.SNOOZE
        assert snoozed.fire_at == at(8, 20)
        assert plugin.scheduled == [(snooze_id, at(8, 20))]
        assert plugin.cancelled == []
        assert await _stored_ids(storage) == {_id("med-a", "08:00", "initial"), snooze_id}

    @pytest.mark.asyncio
    async def test_snooze_survives_reconcile_until_logged(self, storage, plugin) -> None:
        """Test a snooze is kept while its slot is targeted and dropped once logged."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, clock, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        clock.now = at(8, 5)
        await engine.async_snooze("med-a", "08:00", "initial")
        plugin.reset_calls()

        clock.now = at(8, 6)
        await engine.async_reconcile()
        assert plugin.calls == 0

        provider.log("med-a", "08:00")
        await engine.async_reconcile()
        assert sorted(plugin.cancelled) == sorted(
            [_id("med-a", "08:00", "initial"), _id("med-a", "08:00", "snooze")]
        )

    @pytest.mark.asyncio
    async def test_snooze_disabled(self, storage, plugin) -> None:
        """Test disabled snoozing schedules nothing."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(
            storage, plugin, provider, settings=NotificationSettings(snooze_enabled=False)
        )
        assert await engine.async_snooze("med-a", "08:00", "initial") is None
        assert plugin.calls == 0

    @pytest.mark.asyncio
    async def test_snooze_validation(self, storage, plugin) -> None:
        """Test bad slots, unknown schedules and snoozed snoozes are rejected."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider)

        with pytest.raises(ValidationError):
            await engine.async_snooze("med-a", "8:00", "initial")
        with pytest.raises(ValidationError):
            await engine.async_snooze("med-a", "08:00", "snooze")
        with pytest.raises(ValidationError):
            await engine.async_snooze("unknown", "08:00", "initial")
        assert plugin.calls == 0

    @pytest.mark.asyncio
    async def test_snooze_platform_failure(self, storage, plugin) -> None:
        """Test a refused snooze raises and leaves the index unchanged."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        plugin.fail_schedule.add(_id("med-a", "08:00", "snooze"))

        with pytest.raises(PlatformSchedulingError):
            await engine.async_snooze("med-a", "08:00", "followup")
        assert await _stored_ids(storage) == {_id("med-a", "08:00", "initial")}


class TestSummaries:
    """Test weekly and end-of-day summary scheduling."""

    @pytest.mark.asyncio
    async def test_weekly_summary_lifecycle(self, storage, plugin) -> None:
        """Test scheduling, skipping when pending and cancelling when disabled."""
        engine, _, settings = _make_engine(
            storage, plugin, StaticScheduleProvider(), now=at(12)
        )
        monday = date(2024, 3, 18)
        weekly_id = generate_summary_notification_id("u1", "p1", "weekly_summary", monday)

        first = await engine.async_reconcile_summaries()
        assert first == {"weekly_summary": "scheduled", "end_of_day": "skipped"}
        assert plugin.scheduled == [(weekly_id, at(9, day=monday))]
        assert plugin.contents[weekly_id].channel == "weekly_summaries"

        second = await engine.async_reconcile_summaries()
        assert second["weekly_summary"] == "already_scheduled"
        assert len(plugin.scheduled) == 1

        settings.settings = NotificationSettings(weekly_summary_enabled=False)
        third = await engine.async_reconcile_summaries()
        assert third["weekly_summary"] == "cancelled"
        assert plugin.cancelled == [weekly_id]

    @pytest.mark.asyncio
    async def test_end_of_day_summary(self, storage, plugin) -> None:
        """Test the end-of-day summary is scheduled only while still ahead."""
        settings = NotificationSettings(
            end_of_day_enabled=True, end_of_day_time="21:00", weekly_summary_enabled=False
        )
        engine, clock, _ = _make_engine(
            storage, plugin, StaticScheduleProvider(), now=at(12), settings=settings
        )
        eod_id = generate_summary_notification_id("u1", "p1", "end_of_day", TEST_DAY)

        outcome = await engine.async_reconcile_summaries()
        assert outcome["end_of_day"] == "scheduled"
        assert plugin.scheduled == [(eod_id, at(21))]

        plugin.pending.clear()
        clock.now = at(21, 30)
        outcome = await engine.async_reconcile_summaries()
        assert outcome["end_of_day"] == "skipped"

    @pytest.mark.asyncio
    async def test_summary_failure_is_reported(self, storage, plugin) -> None:
        """Test a refused summary reports failure without raising."""
        engine, _, _ = _make_engine(storage, plugin, StaticScheduleProvider(), now=at(12))
        plugin.fail_schedule.add(
            generate_summary_notification_id("u1", "p1", "weekly_summary", date(2024, 3, 18))
        )
        outcome = await engine.async_reconcile_summaries()
        assert outcome["weekly_summary"] == "failed"


class TestLifecycle:
    """Test rollover, scope reset and grace boundaries."""

    @pytest.mark.asyncio
    async def test_rollover_clears_past_days(self, storage, plugin) -> None:
        """Test yesterday's index is removed and today is reconciled."""
        provider = StaticScheduleProvider([medication_schedule()])
        engine, _, _ = _make_engine(storage, plugin, provider, now=at(0, 0))
        yesterday = TEST_DAY - timedelta(days=1)
        index_store = NotificationIndexStore(storage)
        await index_store.async_save("u1", "p1", yesterday, [])
        engine.mark_stale(yesterday)

        result = await engine.async_rollover(TEST_DAY)

        assert result.scheduled == 1
        assert await index_store.async_list_days("u1", "p1") == [TEST_DAY]
        assert engine.scope_state(yesterday) is ScopeState.UNINITIALIZED
        assert engine.scope_state(TEST_DAY) is ScopeState.RECONCILED

    @pytest.mark.asyncio
    async def test_clear_scope(self, storage, plugin) -> None:
        """Test clearing cancels this pet's reminders and summaries only."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)
        await engine.async_reconcile()
        await engine.async_reconcile_summaries()
        other_pet = PendingNotification(
            99, payload=json.dumps({"userId": "u1", "petId": "p2", "type": "weekly_summary"})
        )
        plugin.pending[99] = other_pet

        cancelled = await engine.async_clear_scope()

        assert cancelled == 3
        assert list(plugin.pending) == [99]
        assert storage.values == {}
        assert engine.scope_state(TEST_DAY) is ScopeState.UNINITIALIZED
        assert engine.last_index_size == 0

    def test_next_grace_boundary(self, storage, plugin) -> None:
        """Test the next boundary is the earliest unlogged slot plus grace."""
        provider = StaticScheduleProvider([medication_schedule(times=("08:00", "20:00"))])
        engine, _, _ = _make_engine(storage, plugin, provider)

        assert engine.next_grace_boundary() == at(8, 30)
        provider.log("med-a", "08:00")
        assert engine.next_grace_boundary() == at(20, 30)
        assert engine.next_grace_boundary(at(21)) is None

    def test_lock_registry_prune(self) -> None:
        """Test idle locks of past days are forgotten."""
        locks = ScopeLockRegistry()
        old = locks.get("u1", "p1", TEST_DAY - timedelta(days=1))
        current = locks.get("u1", "p1", TEST_DAY)

        locks.prune(TEST_DAY)

        assert locks.get("u1", "p1", TEST_DAY) is current
        assert locks.get("u1", "p1", TEST_DAY - timedelta(days=1)) is not old
