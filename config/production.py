import os

SECRET_KEY = os.getenv("SECRET_KEY", "please-set-SECRET_KEY")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "gym"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "gym_membership"),
}

DEBUG = False
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

STORE_BACKEND = "mysql"
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))

MONTHLY_RECOVERY_QUOTA = int(os.getenv("MONTHLY_RECOVERY_QUOTA", "2"))
RECOVERY_WINDOW_DAYS = int(os.getenv("RECOVERY_WINDOW_DAYS", "14"))
EXPIRY_REMINDER_LEAD_DAYS = int(os.getenv("EXPIRY_REMINDER_LEAD_DAYS", "2"))
EXPIRING_THRESHOLD_DAYS = int(os.getenv("EXPIRING_THRESHOLD_DAYS", "7"))
TX_MAX_ATTEMPTS = int(os.getenv("TX_MAX_ATTEMPTS", "5"))
TX_TIMEOUT_SECONDS = float(os.getenv("TX_TIMEOUT_SECONDS", "5"))
