import os

SECRET_KEY = "test-secret"

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "gym_membership_test"),
}

DEBUG = False
TESTING = True
LOG_LEVEL = "WARNING"

STORE_BACKEND = "memory"
AUTO_INIT_DB = False

MONTHLY_RECOVERY_QUOTA = 2
RECOVERY_WINDOW_DAYS = 14
EXPIRY_REMINDER_LEAD_DAYS = 2
EXPIRING_THRESHOLD_DAYS = 7
TX_MAX_ATTEMPTS = 3
TX_TIMEOUT_SECONDS = None
