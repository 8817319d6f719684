"""Constants for CKD Care integration."""

from typing import Final

# Integration domain
DOMAIN: Final = "ckd_care"

# Configuration keys (config entry data)
CONF_USER_ID: Final = "user_id"
CONF_PET_ID: Final = "pet_id"
CONF_PET_NAME: Final = "pet_name"
CONF_NOTIFY_SERVICE: Final = "notify_service"

# Notification settings keys (options)
CONF_ENABLE_NOTIFICATIONS: Final = "enable_notifications"
CONF_WEEKLY_SUMMARY_ENABLED: Final = "weekly_summary_enabled"
CONF_SNOOZE_ENABLED: Final = "snooze_enabled"
CONF_END_OF_DAY_ENABLED: Final = "end_of_day_enabled"
CONF_END_OF_DAY_TIME: Final = "end_of_day_time"
CONF_FOLLOWUP_ENABLED: Final = "followup_enabled"

# Reminder policy keys (options)
CONF_GRACE_PERIOD_MINUTES: Final = "grace_period_minutes"
CONF_FOLLOWUP_OFFSET_HOURS: Final = "followup_offset_hours"
CONF_SNOOZE_MINUTES: Final = "snooze_minutes"
CONF_DEBUG_LOGGING: Final = "debug_logging"

# Default values
DEFAULT_PET_NAME: Final = "your pet"
DEFAULT_NOTIFY_SERVICE: Final = "persistent_notification.create"
DEFAULT_ENABLE_NOTIFICATIONS: Final = True
DEFAULT_WEEKLY_SUMMARY_ENABLED: Final = True
DEFAULT_SNOOZE_ENABLED: Final = True
DEFAULT_END_OF_DAY_ENABLED: Final = False  # Opt-in to avoid notification fatigue
DEFAULT_END_OF_DAY_TIME: Final = "22:00"
DEFAULT_FOLLOWUP_ENABLED: Final = True
DEFAULT_DEBUG_LOGGING: Final = False

# Reminder policy defaults
DEFAULT_GRACE_PERIOD_MINUTES: Final = 30
DEFAULT_FOLLOWUP_OFFSET_HOURS: Final = 2
DEFAULT_SNOOZE_MINUTES: Final = 15
DEFAULT_MAX_NOTIFICATIONS_PER_PET: Final = 50
DEFAULT_LIMIT_WARNING_THRESHOLD: Final = 40
DEFAULT_FOLLOWUP_CUTOFF_HOUR: Final = 23
DEFAULT_NEXT_MORNING_HOUR: Final = 8
DEFAULT_WEEKLY_SUMMARY_WEEKDAY: Final = 0  # Monday
DEFAULT_WEEKLY_SUMMARY_TIME: Final = "09:00"

# Option bounds
GRACE_PERIOD_MINUTES_MIN: Final = 0
GRACE_PERIOD_MINUTES_MAX: Final = 180
FOLLOWUP_OFFSET_HOURS_MIN: Final = 1
FOLLOWUP_OFFSET_HOURS_MAX: Final = 12
SNOOZE_MINUTES_MIN: Final = 1
SNOOZE_MINUTES_MAX: Final = 120

# Time-of-day format used everywhere ("HH:mm")
TIME_FORMAT: Final = "HH:mm"

# Treatment types
TREATMENT_MEDICATION: Final = "medication"
TREATMENT_FLUID: Final = "fluid"

# Notification kinds
KIND_INITIAL: Final = "initial"
KIND_FOLLOWUP: Final = "followup"
KIND_SNOOZE: Final = "snooze"

# Summary notification types (not part of the per-day index)
SUMMARY_WEEKLY: Final = "weekly_summary"
SUMMARY_END_OF_DAY: Final = "end_of_day"

# Notification channels
CHANNEL_MEDICATION_REMINDERS: Final = "medication_reminders"
CHANNEL_FLUID_REMINDERS: Final = "fluid_reminders"
CHANNEL_WEEKLY_SUMMARIES: Final = "weekly_summaries"
CHANNEL_DAILY_SUMMARIES: Final = "daily_summaries"

# Storage
NOTIFICATION_INDEX_NAMESPACE: Final = "notif_index_v2"
NOTIFICATION_INDEX_STORAGE_KEY: Final = f"{DOMAIN}.notification_index"
NOTIFICATION_INDEX_STORAGE_VERSION: Final = 1
PENDING_NOTIFICATIONS_STORAGE_KEY: Final = f"{DOMAIN}.pending_notifications"
PENDING_NOTIFICATIONS_STORAGE_VERSION: Final = 1
SCHEDULE_CACHE_STORAGE_KEY: Final = f"{DOMAIN}.schedules"
SCHEDULE_CACHE_STORAGE_VERSION: Final = 1

# Bus events and dispatcher signals
EVENT_NOTIFICATION_ERROR: Final = f"{DOMAIN}_notification_error"
SIGNAL_RECONCILED: Final = f"{DOMAIN}_reconciled"

# Services
SERVICE_RECONCILE: Final = "reconcile"
SERVICE_SNOOZE: Final = "snooze"
SERVICE_LOG_TREATMENT: Final = "log_treatment"
SERVICE_UPSERT_SCHEDULE: Final = "upsert_schedule"
SERVICE_DELETE_SCHEDULE: Final = "delete_schedule"
SERVICE_CLEAR_INDEX: Final = "clear_index"

# Service fields
ATTR_ENTRY_ID: Final = "entry_id"
ATTR_SCHEDULE_ID: Final = "schedule_id"
ATTR_TIME_SLOT: Final = "time_slot"
ATTR_KIND: Final = "kind"
ATTR_TREATMENT_TYPE: Final = "treatment_type"
ATTR_FREQUENCY: Final = "frequency"
ATTR_REMINDER_TIMES: Final = "reminder_times"
ATTR_IS_ACTIVE: Final = "is_active"
ATTR_NAME: Final = "name"
ATTR_CREATED_AT: Final = "created_at"
ATTR_DATE: Final = "date"

# Trigger timing
RECONCILE_INTERVAL_MINUTES: Final = 60
ROLLOVER_SECOND: Final = 5  # seconds after midnight
GRACE_TIMER_SLACK_SECONDS: Final = 1

# hass.data keys
DATA_COORDINATORS: Final = "coordinators"
DATA_INDEX_STORAGE: Final = "index_storage"
DATA_SCOPE_LOCKS: Final = "scope_locks"
DATA_ERROR_HANDLER: Final = "error_handler"
