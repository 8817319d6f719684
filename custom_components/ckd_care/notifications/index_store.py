"""Persistent per-day index of scheduled notifications.

Each (user, pet, day) scope is stored as one JSON blob::

    {"checksum": "<8 hex chars>", "entries": [<entry json>, ...]}

The checksum is the 32-bit FNV-1a hash of the compact JSON array of entries
sorted by notification id. A blob whose checksum does not match is treated
as corrupt: load() returns an empty index flagged ``corrupt`` so the engine
rebuilds it from the platform's pending notifications.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date
from typing import Any

from ..const import NOTIFICATION_INDEX_NAMESPACE
from .error_handler import NotificationErrorHandler
from .exceptions import IntegrityError, ValidationError
from .models import (
    NotificationIndex,
    PendingNotification,
    ScheduledNotificationEntry,
    sorted_entries,
)
from .notification_id import fnv1a_32
from .storage import KeyValueStorage

_LOGGER = logging.getLogger(__name__)


def canonical_entries_json(entries: Iterable[ScheduledNotificationEntry]) -> str:
    """Return the deterministic serialization used for checksums."""
    return json.dumps(
        [entry.to_json() for entry in sorted_entries(entries)],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_checksum(entries: Iterable[ScheduledNotificationEntry]) -> str:
    """Return the 8-character hex checksum of entries."""
    return f"{fnv1a_32(canonical_entries_json(entries)):08x}"


def verify_checksum(entries: Iterable[ScheduledNotificationEntry], checksum: str) -> bool:
    """Return True if checksum matches entries."""
    return isinstance(checksum, str) and compute_checksum(entries) == checksum.lower()


def encode_index(entries: Iterable[ScheduledNotificationEntry]) -> tuple[str, str]:
    """Return (blob, checksum) for entries."""
    ordered = sorted_entries(entries)
    checksum = compute_checksum(ordered)
    blob = json.dumps(
        {"checksum": checksum, "entries": [entry.to_json() for entry in ordered]},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return blob, checksum


def decode_index(raw: str) -> NotificationIndex:
    """Decode a stored blob.

    Rows that fail validation are dropped individually; the checksum is then
    verified against the rows that survived.

    Raises:
        IntegrityError: if the blob is malformed or its checksum does not match.
    """
    try:
        data: Any = json.loads(raw)
    except ValueError as err:
        raise IntegrityError(f"Index is not valid JSON: {err}") from err

    if not isinstance(data, dict):
        raise IntegrityError("Index is not a JSON object")

    checksum = data.get("checksum")
    rows = data.get("entries")
    if not isinstance(checksum, str) or not isinstance(rows, list):
        raise IntegrityError("Index is missing checksum or entries")

    entries = [
        entry
        for entry in (ScheduledNotificationEntry.from_json(row) for row in rows)
        if entry is not None
    ]

    if not verify_checksum(entries, checksum):
        raise IntegrityError(
            f"Checksum mismatch (stored {checksum}, computed {compute_checksum(entries)})"
        )

    try:
        return NotificationIndex(entries=frozenset(entries), checksum=checksum)
    except ValidationError as err:
        raise IntegrityError(f"Index holds duplicate notification ids: {err}") from err


def escape_key_part(value: str) -> str:
    """Escape the key separator so distinct ids never share a storage key."""
    return value.replace("%", "%25").replace("_", "%5F")


class NotificationIndexStore:
    """Load, save and recover the notification index for a scope."""

    def __init__(
        self,
        storage: KeyValueStorage,
        error_handler: NotificationErrorHandler | None = None,
        namespace: str = NOTIFICATION_INDEX_NAMESPACE,
    ) -> None:
        """Initialize the store over a key-value backend."""
        self._storage = storage
        self._error_handler = error_handler
        self._namespace = namespace

    def _scope_prefix(self, user_id: str, pet_id: str) -> str:
        return f"{self._namespace}_{escape_key_part(user_id)}_{escape_key_part(pet_id)}_"

    def build_key(self, user_id: str, pet_id: str, day: date) -> str:
        """Return the storage key for a scope."""
        return f"{self._scope_prefix(user_id, pet_id)}{day.isoformat()}"

    async def async_load(self, user_id: str, pet_id: str, day: date) -> NotificationIndex:
        """Return the stored index for a scope.

        Missing data yields an empty index. Corrupt data yields an empty index
        with ``corrupt`` set. StorageIOError from the backend propagates.
        """
        key = self.build_key(user_id, pet_id, day)
        raw = await self._storage.async_get_string(key)
        if raw is None:
            _LOGGER.debug("No notification index for %s", key)
            return NotificationIndex.empty()

        try:
            index = decode_index(raw)
        except IntegrityError as err:
            if self._error_handler is not None:
                self._error_handler.report(
                    "index_load", err, user_id=user_id, pet_id=pet_id, day=day
                )
            else:
                _LOGGER.warning("Notification index %s is corrupt: %s", key, err)
            return NotificationIndex.empty(corrupt=True)

        _LOGGER.debug("Loaded %d index entries for %s", len(index), key)
        return index

    async def async_save(
        self,
        user_id: str,
        pet_id: str,
        day: date,
        entries: Iterable[ScheduledNotificationEntry],
    ) -> NotificationIndex:
        """Replace the stored index for a scope with entries.

        Raises:
            ValidationError: if two entries share a notification id.
            StorageIOError: if the backend write fails.
        """
        index = NotificationIndex(entries=frozenset(entries))
        blob, checksum = encode_index(index.entries)
        key = self.build_key(user_id, pet_id, day)
        await self._storage.async_set_string(key, blob)
        _LOGGER.debug("Saved %d index entries for %s (checksum %s)", len(index), key, checksum)
        return NotificationIndex(entries=index.entries, checksum=checksum)

    def rebuild_from_platform_state(
        self,
        user_id: str,
        pet_id: str,
        day: date,
        pending: Iterable[PendingNotification],
    ) -> NotificationIndex:
        """Reconstruct a scope's index from the platform's pending notifications.

        Only pending notifications whose payload names this user, pet and day
        and describes a valid reminder are kept.
        """
        recovered: dict[int, ScheduledNotificationEntry] = {}
        for notification in pending:
            payload = notification.decoded_payload()
            if payload is None:
                continue
            if payload.get("userId") != user_id or payload.get("petId") != pet_id:
                continue
            if payload.get("date") not in (None, day.isoformat()):
                continue

            try:
                entry = ScheduledNotificationEntry.create(
                    notification_id=notification.notification_id,
                    schedule_id=payload["scheduleId"],
                    treatment_type=payload["treatmentType"],
                    time_slot=payload["timeSlot"],
                    kind=payload["kind"],
                )
            except (KeyError, ValidationError) as err:
                _LOGGER.debug(
                    "Skipping pending notification %s during rebuild: %s",
                    notification.notification_id,
                    err,
                )
                continue
            recovered[entry.notification_id] = entry

        entries = frozenset(recovered.values())
        _LOGGER.info(
            "Rebuilt notification index for user %s pet %s on %s: %d entries recovered",
            user_id,
            pet_id,
            day.isoformat(),
            len(entries),
        )
        return NotificationIndex(entries=entries, checksum=compute_checksum(entries))

    async def async_clear(self, user_id: str, pet_id: str, day: date) -> None:
        """Delete the index of one scope."""
        await self._storage.async_remove(self.build_key(user_id, pet_id, day))

    async def async_clear_scope(self, user_id: str, pet_id: str) -> list[date]:
        """Delete every stored day for a user/pet and return the cleared days."""
        prefix = self._scope_prefix(user_id, pet_id)
        cleared: list[date] = []
        for key in await self._storage.async_keys():
            if not key.startswith(prefix):
                continue
            try:
                day = date.fromisoformat(key[len(prefix):])
            except ValueError:
                continue
            await self._storage.async_remove(key)
            cleared.append(day)
        return cleared

    async def async_list_days(self, user_id: str, pet_id: str) -> list[date]:
        """Return the days with a stored index for a user/pet."""
        prefix = self._scope_prefix(user_id, pet_id)
        days: list[date] = []
        for key in await self._storage.async_keys():
            if not key.startswith(prefix):
                continue
            try:
                days.append(date.fromisoformat(key[len(prefix):]))
            except ValueError:
                continue
        return sorted(days)
