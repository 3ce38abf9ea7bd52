import os

SECRET_KEY = os.getenv("SECRET_KEY", "please-set-SECRET_KEY")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "course_sync_db"),
    "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
}

CALENDAR_API_BASE_URL = os.getenv("CALENDAR_API_BASE_URL", "")
CALENDAR_API_TOKEN = os.getenv("CALENDAR_API_TOKEN", "")
CALENDAR_API_TIMEOUT = float(os.getenv("CALENDAR_API_TIMEOUT", "15"))

CHECKIN_BASE_URL = os.getenv("CHECKIN_BASE_URL", "")
TIMEZONE_OFFSET = os.getenv("TIMEZONE_OFFSET", "+08:00")
REMINDER_MINUTES = int(os.getenv("REMINDER_MINUTES", "15"))

QUEUE_WORKERS = int(os.getenv("QUEUE_WORKERS", "8"))
QUEUE_MAX_ATTEMPTS = int(os.getenv("QUEUE_MAX_ATTEMPTS", "5"))
QUEUE_BACKOFF_SECONDS = float(os.getenv("QUEUE_BACKOFF_SECONDS", "2"))

TASK_STORE = os.getenv("TASK_STORE", "mysql")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEBUG = False

AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))
