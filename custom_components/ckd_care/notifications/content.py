"""Notification text and payloads.

Content only ever names the pet and the generic treatment type. Schedule
names, dosages and volumes stay out of notifications because they can show
up on lock screens and in notification history.
"""

from __future__ import annotations

import json
from datetime import date

from ..const import (
    CHANNEL_DAILY_SUMMARIES,
    CHANNEL_FLUID_REMINDERS,
    CHANNEL_MEDICATION_REMINDERS,
    CHANNEL_WEEKLY_SUMMARIES,
    DEFAULT_PET_NAME,
    SUMMARY_END_OF_DAY,
    SUMMARY_WEEKLY,
)
from .models import (
    NotificationContent,
    NotificationKind,
    ScheduledNotificationEntry,
    TreatmentType,
)

TREATMENT_LABELS: dict[TreatmentType, str] = {
    TreatmentType.MEDICATION: "medication",
    TreatmentType.FLUID: "fluid therapy",
}

TREATMENT_CHANNELS: dict[TreatmentType, str] = {
    TreatmentType.MEDICATION: CHANNEL_MEDICATION_REMINDERS,
    TreatmentType.FLUID: CHANNEL_FLUID_REMINDERS,
}


def _json(payload: dict[str, str]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def build_reminder_payload(
    user_id: str,
    pet_id: str,
    day: date,
    entry: ScheduledNotificationEntry,
) -> str:
    """Return the payload that lets the index be rebuilt from pending notifications."""
    return _json(
        {
            "userId": user_id,
            "petId": pet_id,
            "date": day.isoformat(),
            "scheduleId": entry.schedule_id,
            "timeSlot": entry.time_slot,
            "kind": entry.kind.value,
            "treatmentType": entry.treatment_type.value,
        }
    )


def build_summary_payload(user_id: str, pet_id: str, summary_type: str, anchor: date) -> str:
    """Return the payload of a summary notification."""
    return _json(
        {
            "userId": user_id,
            "petId": pet_id,
            "date": anchor.isoformat(),
            "type": summary_type,
        }
    )


def reminder_content(
    entry: ScheduledNotificationEntry,
    pet_name: str | None,
    payload: str | None = None,
) -> NotificationContent:
    """Return generic title and body for a treatment reminder."""
    name = pet_name or DEFAULT_PET_NAME
    label = TREATMENT_LABELS[entry.treatment_type]
    channel = TREATMENT_CHANNELS[entry.treatment_type]

    if entry.kind is NotificationKind.INITIAL:
        title = f"Treatment reminder: {label.capitalize()} for {name}"
        body = f"It's time to give {name} their {label}."
    elif entry.kind is NotificationKind.FOLLOWUP:
        title = f"Treatment reminder for {name}"
        body = f"{name} may still need their treatment."
    else:
        title = f"Snoozed reminder for {name}"
        body = f"It's time to give {name} their {label}."

    return NotificationContent(title=title, body=body, channel=channel, payload=payload)


def summary_content(
    summary_type: str,
    pet_name: str | None,
    payload: str | None = None,
) -> NotificationContent:
    """Return content for a weekly or end-of-day summary."""
    name = pet_name or DEFAULT_PET_NAME
    if summary_type == SUMMARY_WEEKLY:
        return NotificationContent(
            title="Your weekly summary is ready!",
            body=f"See {name}'s progress and treatment adherence for the week.",
            channel=CHANNEL_WEEKLY_SUMMARIES,
            payload=payload,
        )
    if summary_type == SUMMARY_END_OF_DAY:
        return NotificationContent(
            title=f"End of day check for {name}",
            body=f"Review today's treatments for {name}.",
            channel=CHANNEL_DAILY_SUMMARIES,
            payload=payload,
        )
    raise ValueError(f"Unknown summary type: {summary_type}")
