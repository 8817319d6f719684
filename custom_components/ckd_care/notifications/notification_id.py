"""Deterministic notification IDs.

IDs are the 32-bit FNV-1a hash of the pipe-joined inputs masked to 31 bits,
so the same (user, pet, schedule, slot, kind) always maps to the same
positive platform ID across restarts. Collisions (about 1 in 2**31) are not
detected here.
"""

from __future__ import annotations

from datetime import date
from typing import Final

FNV_OFFSET_BASIS_32: Final = 0x811C9DC5
FNV_PRIME_32: Final = 0x01000193
MASK_32: Final = 0xFFFFFFFF
MASK_31: Final = 0x7FFFFFFF

# Never valid inside an id, an "HH:mm" slot or a kind
ID_SEPARATOR: Final = "|"


def fnv1a_32(data: str | bytes) -> int:
    """Return the 32-bit FNV-1a hash of the UTF-8 encoding of data."""
    raw = data.encode("utf-8") if isinstance(data, str) else data
    value = FNV_OFFSET_BASIS_32
    for byte in raw:
        value ^= byte
        value = (value * FNV_PRIME_32) & MASK_32
    return value


def generate_notification_id(
    user_id: str,
    pet_id: str,
    schedule_id: str,
    time_slot: str,
    kind: str,
) -> int:
    """Return the stable 31-bit notification id for a reminder.

    Inputs are not validated; callers validate slot and kind first.
    """
    # Enum members hash by value, never by their repr
    kind_value = getattr(kind, "value", kind)
    composite = ID_SEPARATOR.join(
        (user_id, pet_id, schedule_id, time_slot, kind_value)
    )
    return fnv1a_32(composite) & MASK_31


def generate_summary_notification_id(
    user_id: str,
    pet_id: str,
    summary_type: str,
    anchor: date,
) -> int:
    """Return the stable id for a weekly or end-of-day summary."""
    composite = ID_SEPARATOR.join(
        (user_id, pet_id, summary_type, anchor.isoformat())
    )
    return fnv1a_32(composite) & MASK_31
