"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

MONTHLY_RECOVERY_QUOTA = 2
DEFAULT_RECOVERY_WINDOW_DAYS = 14
EXPIRY_REMINDER_LEAD_DAYS = 2
DEFAULT_EXPIRING_THRESHOLD_DAYS = 7
DEFAULT_TX_MAX_ATTEMPTS = 3
