"""Schedule and settings state for CKD Care."""

from .schedule_cache import ScheduleCache
from .settings import ConfigEntrySettingsProvider

__all__ = [
	"ConfigEntrySettingsProvider",
	"ScheduleCache",
]
