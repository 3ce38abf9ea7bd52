import os

SECRET_KEY = "test-secret"

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "course_sync_test"),
    "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
}

CALENDAR_API_BASE_URL = "http://calendar.test/api"
CALENDAR_API_TOKEN = "test-token"
CALENDAR_API_TIMEOUT = 5.0

CHECKIN_BASE_URL = "http://checkin.test"
TIMEZONE_OFFSET = "+08:00"
REMINDER_MINUTES = 15

QUEUE_WORKERS = 2
QUEUE_MAX_ATTEMPTS = 3
QUEUE_BACKOFF_SECONDS = 0.0

TASK_STORE = "memory"

LOG_LEVEL = "WARNING"
DEBUG = False
TESTING = True

AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))
