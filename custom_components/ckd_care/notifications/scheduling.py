"""Timing helpers for reminder scheduling.

All functions are pure: they take the current time and timezone from the
caller so that reconciliation can be exercised with a simulated clock.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from .models import NotificationKind, ReminderPolicy, ScheduledNotificationEntry, TreatmentType
from .time_validation import parse_time_string

KIND_PRIORITY: dict[NotificationKind, int] = {
    NotificationKind.INITIAL: 100,
    NotificationKind.FOLLOWUP: 50,
    NotificationKind.SNOOZE: 25,
}

TREATMENT_PRIORITY: dict[TreatmentType, int] = {
    TreatmentType.MEDICATION: 10,
    TreatmentType.FLUID: 5,
}

# (hours until fire, bonus), checked in order
PROXIMITY_PRIORITY: tuple[tuple[float, int], ...] = (
    (1, 20),
    (3, 10),
    (6, 5),
)


class SchedulingDecision(str, Enum):
    """What to do with a notification given its fire time."""

    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"
    MISSED = "missed"


def zoned_datetime_for_day(day: date, time_slot: str, tz: tzinfo | None) -> datetime:
    """Return the local datetime of time_slot on day.

    Raises:
        TimeFormatError: if time_slot is not "HH:mm".
    """
    hour, minute = parse_time_string(time_slot)
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def evaluate_grace_period(
    fire_at: datetime,
    now: datetime,
    grace_period_minutes: int,
) -> SchedulingDecision:
    """Decide whether a fire time is upcoming, still in grace, or missed."""
    if fire_at > now:
        return SchedulingDecision.SCHEDULED
    if now - fire_at <= timedelta(minutes=grace_period_minutes):
        return SchedulingDecision.IMMEDIATE
    return SchedulingDecision.MISSED


def calculate_followup_time(initial_at: datetime, policy: ReminderPolicy) -> datetime:
    """Return when the follow-up for a reminder firing at initial_at is due.

    Follow-ups landing after the cutoff hour of the initial's day move to the
    next morning.
    """
    followup_at = initial_at + timedelta(hours=policy.followup_offset_hours)
    cutoff = datetime.combine(
        initial_at.date(), time(policy.followup_cutoff_hour), tzinfo=initial_at.tzinfo
    )
    if followup_at > cutoff:
        return datetime.combine(
            initial_at.date() + timedelta(days=1),
            time(policy.next_morning_hour),
            tzinfo=initial_at.tzinfo,
        )
    return followup_at


def grace_deadline(initial_at: datetime, policy: ReminderPolicy) -> datetime:
    """Return the instant after which an unlogged slot earns a follow-up."""
    return initial_at + timedelta(minutes=policy.grace_period_minutes)


def next_weekly_summary_time(now: datetime, policy: ReminderPolicy) -> datetime:
    """Return the next weekly summary fire time strictly after now.

    Today counts when it is the summary weekday and the time has not passed.
    """
    hour, minute = parse_time_string(policy.weekly_summary_time)
    days_ahead = (policy.weekly_summary_weekday - now.weekday()) % 7
    candidate = datetime.combine(
        now.date() + timedelta(days=days_ahead), time(hour, minute), tzinfo=now.tzinfo
    )
    if candidate <= now:
        candidate = datetime.combine(
            candidate.date() + timedelta(days=7), time(hour, minute), tzinfo=now.tzinfo
        )
    return candidate


def calculate_priority(
    entry: ScheduledNotificationEntry,
    fire_at: datetime,
    now: datetime,
) -> int:
    """Return the ranking score used when a pet exceeds its notification limit."""
    score = KIND_PRIORITY.get(entry.kind, 0) + TREATMENT_PRIORITY.get(entry.treatment_type, 0)
    hours_until = (fire_at - now).total_seconds() / 3600
    for threshold, bonus in PROXIMITY_PRIORITY:
        if hours_until <= threshold:
            score += bonus
            break
    return score
