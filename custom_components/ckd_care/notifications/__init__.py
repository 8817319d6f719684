"""Notification scheduling core for CKD Care."""

from .engine import ReminderEngine, ScopeLockRegistry, ScopeState, SnoozeResult
from .error_handler import NotificationErrorHandler
from .exceptions import (
    CkdCareError,
    IntegrityError,
    PlatformSchedulingError,
    StorageIOError,
    TimeFormatError,
    ValidationError,
)
from .index_store import NotificationIndexStore
from .models import (
    NotificationIndex,
    NotificationKind,
    NotificationSettings,
    ReconcileResult,
    ReminderPolicy,
    Schedule,
    ScheduledNotificationEntry,
    ScheduleFrequency,
    TreatmentType,
)
from .plugin import HomeAssistantReminderPlugin, ReminderPlugin
from .providers import CachedScheduleProvider, SettingsProvider
from .storage import HomeAssistantKeyValueStorage, KeyValueStorage

__all__ = [
	"CachedScheduleProvider",
	"CkdCareError",
	"HomeAssistantKeyValueStorage",
	"HomeAssistantReminderPlugin",
	"IntegrityError",
	"KeyValueStorage",
	"NotificationErrorHandler",
	"NotificationIndex",
	"NotificationIndexStore",
	"NotificationKind",
	"NotificationSettings",
	"PlatformSchedulingError",
	"ReconcileResult",
	"ReminderEngine",
	"ReminderPlugin",
	"ReminderPolicy",
	"Schedule",
	"ScheduleFrequency",
	"ScheduledNotificationEntry",
	"ScopeLockRegistry",
	"ScopeState",
	"SettingsProvider",
	"SnoozeResult",
	"StorageIOError",
	"TimeFormatError",
	"TreatmentType",
	"ValidationError",
]
