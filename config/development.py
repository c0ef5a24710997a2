import os

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "gym_membership"),
}

DEBUG = True
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# "mysql" or "memory" (process-local store, handy without a database)
STORE_BACKEND = os.getenv("STORE_BACKEND", "mysql")

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "1")))

MONTHLY_RECOVERY_QUOTA = int(os.getenv("MONTHLY_RECOVERY_QUOTA", "2"))
RECOVERY_WINDOW_DAYS = int(os.getenv("RECOVERY_WINDOW_DAYS", "14"))
EXPIRY_REMINDER_LEAD_DAYS = int(os.getenv("EXPIRY_REMINDER_LEAD_DAYS", "2"))
EXPIRING_THRESHOLD_DAYS = int(os.getenv("EXPIRING_THRESHOLD_DAYS", "7"))
TX_MAX_ATTEMPTS = int(os.getenv("TX_MAX_ATTEMPTS", "3"))
TX_TIMEOUT_SECONDS = float(os.getenv("TX_TIMEOUT_SECONDS", "10"))
